"""Execution guard — retry and safe-execute combinators plus the error log.

All filesystem I/O in the resolver and the adapters goes through
``with_retry``. Only transient OS errors (resource busy, too many open
files...) are retried; a missing path or a permission problem fails on the
first attempt.

Every handled error is recorded in an ``ErrorLog`` before the caller decides
whether to continue. When the log has a directory, each record is also
appended to ``<log_dir>/error.log`` as one JSON object per line.
"""

from __future__ import annotations

import errno
import json
import logging
import platform
import sys
import time
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from .errors import (
    CompoundError,
    CriticalError,
    ErrorCode,
    ErrorRecord,
    FileOperationError,
)

logger = logging.getLogger("compound_workflow.guard")

T = TypeVar("T")

TRANSIENT_ERRNOS = frozenset(
    {errno.EBUSY, errno.EMFILE, errno.ENFILE, errno.EAGAIN, errno.EINTR, errno.ETXTBSY}
)


class RetryPolicy(BaseModel):
    """Bounded geometric backoff."""

    max_attempts: int = Field(default=3, ge=1, description="Total attempts, including the first")
    initial_delay: float = Field(default=0.5, ge=0, description="Seconds to wait after the first failure")
    backoff: float = Field(default=2.0, ge=1, description="Delay multiplier per further attempt")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return self.initial_delay * (self.backoff ** (attempt - 1))


DEFAULT_RETRY = RetryPolicy()


def is_transient(exc: BaseException) -> bool:
    """Decide whether an exception is worth retrying.

    Args:
        exc: The raised exception.

    Returns:
        bool: True for transient OS errors only.
    """
    if isinstance(exc, (FileNotFoundError, PermissionError, IsADirectoryError, NotADirectoryError)):
        return False
    if isinstance(exc, OSError):
        return exc.errno in TRANSIENT_ERRNOS
    return False


def with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable to run.
        policy: Retry policy (default: 3 attempts, 0.5s, x2).
        should_retry: Predicate deciding whether a failure is retryable.
        sleep: Sleep function, injectable for tests.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        The last exception raised by ``operation``.
    """
    policy = policy or DEFAULT_RETRY
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            wait = policy.delay_for(attempt)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                wait,
            )
            sleep(wait)
            attempt += 1


def wrap_exception(exc: BaseException, **context: Any) -> CompoundError:
    """Translate an arbitrary exception into the CompoundError taxonomy.

    Args:
        exc: The exception to wrap.
        **context: Extra context (path, operation...).

    Returns:
        CompoundError: ``exc`` itself when it already is one.
    """
    if isinstance(exc, CompoundError):
        if context:
            exc.context = {**context, **exc.context}
        return exc
    if isinstance(exc, OSError):
        path = context.pop("path", None) or exc.filename or "<unknown>"
        operation = context.pop("operation", "read")
        wrapped: CompoundError = FileOperationError(
            exc.strerror or str(exc), str(path), operation, **context
        )
    else:
        wrapped = CompoundError(
            str(exc) or type(exc).__name__,
            ErrorCode.UNKNOWN_ERROR,
            {"exception": type(exc).__name__, **context},
        )
    wrapped.__cause__ = exc
    return wrapped


class ErrorLog:
    """Collects every handled error for one run.

    Args:
        log_dir: Directory for ``error.log``; None keeps records in memory only.
    """

    LOG_FILE = "error.log"

    def __init__(self, log_dir: Optional[Path] = None) -> None:
        self.log_dir = Path(log_dir).expanduser() if log_dir else None
        self._records: list[ErrorRecord] = []

    @property
    def records(self) -> list[ErrorRecord]:
        """All records, oldest first."""
        return list(self._records)

    @property
    def path(self) -> Optional[Path]:
        """Path of the JSON-lines log file, if any."""
        return self.log_dir / self.LOG_FILE if self.log_dir else None

    def record(self, exc: BaseException, **context: Any) -> ErrorRecord:
        """Record an error and log it.

        Args:
            exc: The error (wrapped into the taxonomy if needed).
            **context: Extra context merged into the record.

        Returns:
            ErrorRecord: The stored record.
        """
        err = wrap_exception(exc, **context)
        rec = err.to_record()
        self._records.append(rec)

        if err.recoverable:
            logger.warning("%s", err.user_message())
        else:
            logger.error("%s", err.user_message())

        self._append(rec)
        return rec

    def by_code(self) -> dict[str, int]:
        """Count records per error code."""
        counts: dict[str, int] = {}
        for rec in self._records:
            counts[rec.code.value] = counts.get(rec.code.value, 0) + 1
        return counts

    def _append(self, rec: ErrorRecord) -> None:
        """Append one JSON line to the log file."""
        if self.path is None:
            return
        entry = {
            **rec.model_dump(mode="json"),
            "environment": {
                "python": sys.version.split()[0],
                "platform": platform.system().lower(),
                "cwd": str(Path.cwd()),
            },
        }
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, default=str) + "\n")
        except OSError as exc:
            logger.debug("Could not write error log %s: %s", self.path, exc)


_MISSING: Any = object()


def safe_execute(
    fn: Callable[[], T],
    fallback: Any = _MISSING,
    error_log: Optional[ErrorLog] = None,
    **context: Any,
) -> T:
    """Run ``fn``; on a recoverable failure return ``fallback`` instead.

    The failure is always recorded first. Non-recoverable failures, and
    recoverable ones without a fallback, are re-raised as CompoundErrors.

    Args:
        fn: Zero-argument callable.
        fallback: Value (or zero-argument callable) used on recoverable failure.
        error_log: Where to record the failure.
        **context: Context attached to the record.

    Returns:
        The result of ``fn`` or the fallback.
    """
    try:
        return fn()
    except Exception as exc:
        err = wrap_exception(exc, **context)
        (error_log or ErrorLog()).record(err)
        if err.recoverable and fallback is not _MISSING:
            return fallback() if callable(fallback) else fallback
        if err is exc:
            raise
        raise err from exc


def try_or_default(fn: Callable[[], T], default: Optional[T] = None) -> Optional[T]:
    """Run ``fn`` and return ``default`` on any CompoundError or OSError."""
    try:
        return fn()
    except (CompoundError, OSError):
        return default


def ensure(condition: bool, message: str, **context: Any) -> None:
    """Raise CriticalError when an internal invariant does not hold."""
    if not condition:
        raise CriticalError(message, **context)


__all__ = [
    "DEFAULT_RETRY",
    "ErrorLog",
    "RetryPolicy",
    "ensure",
    "is_transient",
    "safe_execute",
    "try_or_default",
    "with_retry",
    "wrap_exception",
]
