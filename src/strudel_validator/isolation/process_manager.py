"""
Manages the lifecycle of a long-running validator worker subprocess.

The worker communicates via JSON lines on stdin/stdout.  Stderr is
forwarded to the parent process logger via a daemon thread.
"""

import itertools
import logging
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Optional

from .protocol import (
    COLUMN,
    ERROR,
    FATAL,
    ID,
    LINE,
    PING,
    PONG,
    READY,
    VALID,
    VALIDATE,
    decode_message,
    encode_message,
)

logger = logging.getLogger(__name__)

MAX_RESTARTS = 2
SHUTDOWN_TIMEOUT = 5.0


class ValidatorError(RuntimeError):
    """Raised when the worker cannot be reached or answers out of protocol."""


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


class ValidatorProcess:
    """Manages a single validator worker subprocess."""

    def __init__(self, python_path: str = sys.executable):
        self._python = python_path
        self._proc: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()  # Protects _proc access
        self._restart_count = 0
        self._ids = itertools.count(1)

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> None:
        """Spawn the worker subprocess and wait for its ready signal."""
        cmd = [self._python, "-m", "strudel_validator.isolation.worker"]
        logger.debug("Starting worker: %s", " ".join(cmd))

        self._proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            bufsize=1,  # Line-buffered
        )

        # Daemon thread to forward stderr
        self._stderr_thread = threading.Thread(
            target=self._forward_stderr,
            daemon=True,
            name="validator-stderr",
        )
        self._stderr_thread.start()

        try:
            resp = self._read_response()
        except BrokenPipeError as exc:
            self._kill_unlocked()
            raise ValidatorError(f"Validator process closed unexpectedly: {exc}") from exc

        if resp.get(FATAL) or ERROR in resp:
            self._kill_unlocked()
            raise ValidatorError(f"Validator error: {resp.get(ERROR)}")
        if resp.get(READY) is not True:
            self._kill_unlocked()
            raise ValidatorError(f"Expected ready signal, got: {resp}")

        logger.info("Validator worker ready (pid=%s)", self._proc.pid)

    def validate(self, code: str) -> ValidationResult:
        """Check whether *code* compiles. Thread-safe.

        Raises ValidatorError on communication failure.
        """
        request_id = str(next(self._ids))
        with self._lock:
            resp = self._send_locked({"type": VALIDATE, ID: request_id, "code": code})

        if resp.get(ID) != request_id:
            raise ValidatorError(
                f"Response ID mismatch: expected {request_id}, got {resp.get(ID)}"
            )
        if VALID not in resp:
            raise ValidatorError(f"Validator error: {resp.get(ERROR)}")

        return ValidationResult(
            valid=resp[VALID],
            error=resp.get(ERROR),
            line=resp.get(LINE),
            column=resp.get(COLUMN),
        )

    def _send_locked(self, request: dict) -> dict:
        """Send/receive with crash recovery (must hold _lock)."""
        try:
            return self._do_send(request)
        except (BrokenPipeError, OSError, ValueError) as exc:
            if self._restart_count >= MAX_RESTARTS:
                raise ValidatorError(
                    f"Worker crashed {self._restart_count + 1} times, giving up"
                ) from exc

            logger.warning(
                "Worker communication failed (%s), restarting (%d/%d)...",
                exc, self._restart_count + 1, MAX_RESTARTS,
            )
            self._restart_count += 1
            self._kill_unlocked()
            self.start()
            # Re-raise so caller knows the original request was lost
            raise ValidatorError(
                f"Worker crashed and was restarted. Original error: {exc}"
            ) from exc

    def _do_send(self, request: dict) -> dict:
        """Low-level send + receive."""
        if self._proc is None:
            raise ValidatorError("Worker is not running")
        if not self.alive:
            # Died between requests; handled like a crash mid-request
            raise BrokenPipeError(f"Worker exited with status {self._proc.poll()}")

        self._proc.stdin.write(encode_message(request))
        self._proc.stdin.flush()
        return self._read_response()

    def _read_response(self) -> dict:
        """Read the next JSON object from stdout, skipping non-JSON lines."""
        while True:
            line = self._proc.stdout.readline()
            if not line:
                raise BrokenPipeError("Worker closed stdout (crashed?)")

            line = line.strip()
            # Banners and other stray output are not protocol messages
            if not line.startswith("{"):
                logger.debug("Skipping non-protocol line: %s", line)
                continue
            try:
                return decode_message(line)
            except ValueError:
                logger.debug("Skipping malformed line: %s", line)

    def ping(self) -> bool:
        """Check if the worker is responsive."""
        request_id = str(next(self._ids))
        try:
            with self._lock:
                resp = self._send_locked({"type": PING, ID: request_id})
            return resp.get(PONG) is True and resp.get(ID) == request_id
        except Exception:
            return False

    def close(self) -> None:
        """Graceful shutdown — close stdin, then wait for the worker to exit."""
        with self._lock:
            if not self.alive:
                return
            try:
                self._proc.stdin.close()
                code = self._proc.wait(timeout=SHUTDOWN_TIMEOUT)
                logger.debug("Worker exited with status %s", code)
                self._proc = None
            except Exception:
                logger.warning("Graceful shutdown failed, killing worker")
                self._kill_unlocked()

    def kill(self) -> None:
        """Force-kill the worker."""
        with self._lock:
            self._kill_unlocked()

    def _kill_unlocked(self) -> None:
        """Kill without holding lock (caller must hold _lock)."""
        if self._proc is not None:
            try:
                self._proc.kill()
                self._proc.wait(timeout=SHUTDOWN_TIMEOUT)
            except Exception:
                logger.debug("Worker did not exit after kill")
            self._proc = None

    def _forward_stderr(self) -> None:
        """Read worker stderr and log it."""
        proc = self._proc
        try:
            while proc and proc.stderr:
                line = proc.stderr.readline()
                if not line:
                    break
                line = line.rstrip("\n")
                if line:
                    logger.info("[worker] %s", line)
        except (OSError, ValueError):
            logger.debug("Stopped forwarding worker stderr")

    def __enter__(self) -> "ValidatorProcess":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
