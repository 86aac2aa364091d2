"""
Process isolation for code validation.

Validation runs in a long-lived worker subprocess so a misbehaving
transpiler cannot take the parent process down with it.
``ValidatorProcess`` spawns and talks to that worker.
"""

from .process_manager import ValidationResult, ValidatorError, ValidatorProcess

__all__ = ["ValidationResult", "ValidatorError", "ValidatorProcess"]
