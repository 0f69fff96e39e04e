"""Compound Workflow error taxonomy.

Every failure the core can produce is a CompoundError subclass carrying a
code, a severity, a recoverable flag and a context mapping:

    ConfigError            low     recoverable   malformed metadata / config
    FileOperationError     medium  read only     missing dir, unreadable/unwritable file
    CapabilityLookupError  medium  no            name not found after the merge
    ProjectionError        high    no            a projector produced nothing
    CriticalError          fatal   no            invariant violation

Recoverable errors are logged and skipped by the loop that meets them;
everything else propagates to the caller.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class Severity(str, enum.Enum):
    """How bad an error is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FATAL = "fatal"


class ErrorCode(str, enum.Enum):
    """Stable error codes used for suggestions and the structured log."""

    CONFIG_ERROR = "CONFIG_ERROR"
    FILE_OPERATION_ERROR = "FILE_OPERATION_ERROR"
    CAPABILITY_LOOKUP_ERROR = "CAPABILITY_LOOKUP_ERROR"
    PROJECTION_ERROR = "PROJECTION_ERROR"
    CRITICAL_ERROR = "CRITICAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


SUGGESTIONS: dict[ErrorCode, str] = {
    ErrorCode.CONFIG_ERROR: "Check the metadata block (--- ... ---) or .compound/config.yaml for YAML syntax errors",
    ErrorCode.FILE_OPERATION_ERROR: "Check that the path exists and is readable/writable",
    ErrorCode.CAPABILITY_LOOKUP_ERROR: "Run 'compound list' to see the available workflows and agents",
    ErrorCode.PROJECTION_ERROR: "Make sure at least one workflow or agent resolves without errors ('compound validate')",
    ErrorCode.CRITICAL_ERROR: "See the error log for details",
    ErrorCode.UNKNOWN_ERROR: "See the error log for details",
}


class ErrorRecord(BaseModel):
    """Structured form of an error, as written to the error log."""

    code: ErrorCode
    severity: Severity
    recoverable: bool
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CompoundError(Exception):
    """Base class for every error raised by the core.

    Args:
        message: Human-readable description.
        code: Error code.
        context: Extra details (paths, names, line numbers...).
    """

    severity: Severity = Severity.MEDIUM
    recoverable: bool = True

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.context: dict[str, Any] = dict(context or {})
        self.timestamp = datetime.now(timezone.utc)

    def to_record(self) -> ErrorRecord:
        """Convert to an ErrorRecord."""
        return ErrorRecord(
            code=self.code,
            severity=self.severity,
            recoverable=self.recoverable,
            message=self.message,
            context=self.context,
            timestamp=self.timestamp,
        )

    def user_message(self) -> str:
        """Short message suitable for the terminal."""
        return self.message

    def suggestion(self) -> Optional[str]:
        """Remediation hint keyed by error code."""
        return SUGGESTIONS.get(self.code)


class ConfigError(CompoundError):
    """Malformed metadata block or configuration file.

    Args:
        message: What went wrong.
        source: File (or label) the text came from.
        line: 1-based line of the offending content, when known.
        column: 1-based column of the offending content, when known.
    """

    severity = Severity.LOW
    recoverable = True

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        **context: Any,
    ) -> None:
        ctx = {"source": source, "line": line, "column": column, **context}
        super().__init__(message, ErrorCode.CONFIG_ERROR, {k: v for k, v in ctx.items() if v is not None})
        self.source = source
        self.line = line
        self.column = column

    def user_message(self) -> str:
        where = ""
        if self.line is not None:
            where = f" (line {self.line}" + (f", column {self.column})" if self.column is not None else ")")
        return f"Configuration problem: {self.message}{where}"


class FileOperationError(CompoundError):
    """A filesystem operation failed.

    Read failures are recoverable (skip and continue); write, mkdir and
    delete failures are not.

    Args:
        message: What went wrong.
        path: The path involved.
        operation: "read", "write", "mkdir" or "delete".
    """

    severity = Severity.MEDIUM

    def __init__(self, message: str, path: str, operation: str = "read", **context: Any) -> None:
        super().__init__(
            message,
            ErrorCode.FILE_OPERATION_ERROR,
            {"path": str(path), "operation": operation, **context},
        )
        self.path = str(path)
        self.operation = operation
        self.recoverable = operation == "read"

    def user_message(self) -> str:
        verb = "read" if self.operation == "read" else self.operation
        return f"Failed to {verb} {self.path}: {self.message}"

    def suggestion(self) -> Optional[str]:
        return f"Check that {self.path} exists and that you have permission to {self.operation} it"


class CapabilityLookupError(CompoundError):
    """A capability name is absent from every precedence root.

    Args:
        name: The name that was looked up.
        searched_roots: Every root that was searched, highest precedence first.
        category: Category scope of the lookup, if any.
    """

    severity = Severity.MEDIUM
    recoverable = False

    def __init__(
        self,
        name: str,
        searched_roots: list[str],
        category: Optional[str] = None,
    ) -> None:
        scope = f" in category '{category}'" if category else ""
        super().__init__(
            f"Capability '{name}'{scope} not found in any search path",
            ErrorCode.CAPABILITY_LOOKUP_ERROR,
            {"name": name, "category": category, "searched_roots": list(searched_roots)},
        )
        self.name = name
        self.category = category
        self.searched_roots = list(searched_roots)

    def user_message(self) -> str:
        roots = "\n".join(f"  - {r}" for r in self.searched_roots)
        return f"{self.message}. Searched:\n{roots}"


class ProjectionError(CompoundError):
    """A projector produced no artifacts at all.

    Args:
        target: Target tool name (claude, cursor, qoder).
        message: What went wrong.
    """

    severity = Severity.HIGH
    recoverable = False

    def __init__(self, target: str, message: str, **context: Any) -> None:
        super().__init__(message, ErrorCode.PROJECTION_ERROR, {"target": target, **context})
        self.target = target

    def user_message(self) -> str:
        return f"Adapter '{self.target}' failed: {self.message}"


class CriticalError(CompoundError):
    """An internal invariant was violated."""

    severity = Severity.FATAL
    recoverable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, ErrorCode.CRITICAL_ERROR, context)

    def user_message(self) -> str:
        return f"Critical error: {self.message}"
