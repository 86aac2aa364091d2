"""
Subprocess entry point for isolated code validation.

Run as:  ``python -m strudel_validator.isolation.worker``

Loads the transpiler, announces readiness, then reads JSON-line requests
from stdin and writes one JSON-line response per input line to stdout.
Exits 0 when stdin closes and 1 if the transpiler cannot be loaded.

**stdout is reserved for protocol messages** — all logging goes to stderr.

Requests are handled strictly in order on a single thread: a line is
parsed, dispatched and answered before the next one is read.
"""

import logging
import sys
from typing import Any, Callable

from strudel_validator.isolation.protocol import (
    COLUMN,
    EMPTY_CODE_ERROR,
    ERROR,
    LINE,
    PING,
    PONG,
    UNKNOWN_TYPE_ERROR,
    VALID,
    VALIDATE,
    decode_message,
    encode_message,
    fatal_message,
    parse_error_message,
    ready_message,
    with_id,
)

# --- Redirect all logging to stderr (stdout = protocol only) ---
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("strudel_validator.worker")

# Passed on every call; never taken from the request.
TRANSPILE_OPTIONS = {
    "wrap_async": True,
    "add_return": True,
    "simple_locs": True,
}


def load_transpiler() -> Callable[..., Any]:
    """Import the transpiler and return its ``transpile`` callable."""
    from strudel_validator.transpiler import transpile

    return transpile


def _coordinate(source: Any, key: str):
    """Read *key* from a dict or attribute holder; ints only."""
    if source is None:
        return None
    if isinstance(source, dict):
        value = source.get(key)
    else:
        value = getattr(source, key, None)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _error_position(exc: BaseException, key: str):
    """Best-effort coordinate: flat ``loc`` first, then ``location.start``."""
    value = _coordinate(getattr(exc, "loc", None), key)
    if value is not None:
        return value

    location = getattr(exc, "location", None)
    if isinstance(location, dict):
        start = location.get("start")
    else:
        start = getattr(location, "start", None)
    return _coordinate(start, key)


class Worker:
    """Encapsulates the loaded transpiler and the request loop."""

    def __init__(self, transpile: Callable[..., Any]):
        self._transpile = transpile

    # -- Protocol helpers --------------------------------------------------

    def _write(self, payload: dict) -> None:
        """Write a single JSON line to stdout."""
        sys.stdout.write(encode_message(payload))
        sys.stdout.flush()

    # -- Request handlers --------------------------------------------------

    def validate(self, code: Any) -> dict:
        if not code or not isinstance(code, str):
            return {VALID: False, ERROR: EMPTY_CODE_ERROR}

        try:
            self._transpile(code, **TRANSPILE_OPTIONS)
        except Exception as exc:
            logger.debug("Validation failed: %s", exc)
            return {
                VALID: False,
                ERROR: str(exc),
                LINE: _error_position(exc, "line"),
                COLUMN: _error_position(exc, "column"),
            }
        return {VALID: True}

    def handle_line(self, line: str) -> dict:
        """Parse one input line and build its response."""
        try:
            request = decode_message(line)
        except ValueError as exc:
            return parse_error_message(exc)

        request_type = request.get("type")
        if request_type == VALIDATE:
            return with_id(request, self.validate(request.get("code")))
        elif request_type == PING:
            return with_id(request, {PONG: True})
        else:
            logger.warning("Unknown request type: %r", request_type)
            return with_id(request, {ERROR: UNKNOWN_TYPE_ERROR})

    # -- Main loop ---------------------------------------------------------

    def run(self) -> None:
        """Blocking main loop. Announces readiness, then serves until EOF."""
        self._write(ready_message())
        logger.info("Validator ready")

        while True:
            line = sys.stdin.readline()
            if not line:
                break
            self._write(self.handle_line(line.rstrip("\n")))

        logger.info("Input closed, worker exiting")


def main():
    try:
        transpile = load_transpiler()
    except Exception as exc:
        logger.error("Failed to load transpiler: %s", exc)
        sys.stdout.write(encode_message(fatal_message(f"failed to load transpiler: {exc}")))
        sys.stdout.flush()
        sys.exit(1)

    worker = Worker(transpile)
    worker.run()
    sys.exit(0)


if __name__ == "__main__":
    main()
