"""
JSON-line protocol for parent process <-> validator worker communication.

Messages are newline-delimited JSON objects sent over stdin/stdout.
Requests carry a ``type`` tag; responses carry no tag and are told apart
by their fields (``ready``, ``pong``, ``valid``, ``error``).
"""

import json
from typing import Any

# Request types (parent -> worker)
VALIDATE = "validate"
PING = "ping"

# Response fields (worker -> parent)
ID = "id"
READY = "ready"
PONG = "pong"
VALID = "valid"
ERROR = "error"
LINE = "line"
COLUMN = "column"
FATAL = "fatal"

EMPTY_CODE_ERROR = "Empty or invalid code"
UNKNOWN_TYPE_ERROR = "unknown request type"


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON token {name}")


def encode_message(payload: dict) -> str:
    """Encode a message as a JSON line (with trailing newline)."""
    return json.dumps(payload, separators=(",", ":"), allow_nan=False) + "\n"


def decode_message(line: str) -> dict:
    """Decode a JSON line into a message dict.

    Raises ValueError if the line is not strict JSON (NaN and Infinity
    are rejected), nests too deeply to decode, or is not a JSON object.
    """
    try:
        msg = json.loads(line, parse_constant=_reject_constant)
    except RecursionError as exc:
        raise ValueError("JSON nested too deeply") from exc
    if not isinstance(msg, dict):
        raise ValueError(f"expected a JSON object, got {type(msg).__name__}")
    return msg


def with_id(request: dict, payload: dict) -> dict:
    """Prefix a response payload with the request's ``id``, if it sent one."""
    if ID not in request:
        return dict(payload)
    return {ID: request[ID], **payload}


def ready_message() -> dict:
    return {READY: True}


def fatal_message(text: str) -> dict:
    return {ERROR: text, FATAL: True}


def parse_error_message(text: Any) -> dict:
    return {ERROR: f"parse error: {text}"}
