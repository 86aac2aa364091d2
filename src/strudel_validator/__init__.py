"""
strudel-validator: syntax checking for Strudel live-coding patterns.

Quick start:
    from strudel_validator import ValidatorProcess

    with ValidatorProcess() as validator:
        result = validator.validate('s("bd sd")')
        print(result.valid)

In-process use (no isolation):
    from strudel_validator.transpiler import transpile, TranspileError
"""

__version__ = "0.1.0"

from .isolation import ValidationResult, ValidatorError, ValidatorProcess

__all__ = [
    "ValidationResult",
    "ValidatorError",
    "ValidatorProcess",
    "__version__",
]
