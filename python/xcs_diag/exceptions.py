"""
Exception hierarchy for the diagnostic collector.

- DiagnosticError: Base exception for all collector errors
- ConfigurationError: Configuration and validation issues
- MissingRootError: A required source or destination directory is absent
- CopyFailure: A single file could not be copied
- CommandError: External diagnostic command failed or timed out
- StoreQueryError: Document store request, transport or parse failure
- StorageError: Bundle packaging failures
- UnexpectedFailure: Anything else, caught at a phase boundary

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- cause: The original exception, if any
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "XCSDIAG_1001"
    CONFIG_MISSING = "XCSDIAG_1002"
    CONFIG_VALIDATION = "XCSDIAG_1003"

    # Filesystem errors (2xxx)
    FS_MISSING_ROOT = "XCSDIAG_2001"
    FS_COPY_FAILED = "XCSDIAG_2002"
    FS_SCAN_FAILED = "XCSDIAG_2003"

    # Command errors (3xxx)
    COMMAND_FAILED = "XCSDIAG_3001"
    COMMAND_TIMEOUT = "XCSDIAG_3002"
    COMMAND_NOT_FOUND = "XCSDIAG_3003"

    # Document store errors (4xxx)
    STORE_HTTP_ERROR = "XCSDIAG_4001"
    STORE_CONNECTION_FAILED = "XCSDIAG_4002"
    STORE_INVALID_RESPONSE = "XCSDIAG_4003"

    # Bundle errors (5xxx)
    STORAGE_WRITE_FAILED = "XCSDIAG_5001"
    STORAGE_ARCHIVE_FAILED = "XCSDIAG_5002"

    # General errors (9xxx)
    UNKNOWN = "XCSDIAG_9999"


@dataclass
class DiagnosticError(Exception):
    """
    Base exception for all collector errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(DiagnosticError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )


@dataclass
class MissingRootError(DiagnosticError):
    """Raised when a phase's source or destination root does not exist."""

    error_code: ErrorCode = ErrorCode.FS_MISSING_ROOT

    @classmethod
    def for_path(cls, path: str, role: str) -> MissingRootError:
        """Create error for a missing root directory."""
        return cls(
            message=f"{role.capitalize()} root does not exist: {path}",
            context={"path": path, "role": role},
        )


@dataclass
class CopyFailure(DiagnosticError):
    """A single file copy failed. Logged and skipped, never fatal."""

    error_code: ErrorCode = ErrorCode.FS_COPY_FAILED

    @classmethod
    def from_os_error(cls, source: str, destination: str, error: OSError) -> CopyFailure:
        """Create error from the OSError raised by the copy primitive."""
        return cls(
            message=f"Failed to copy {source}: {error.strerror or error}",
            context={"source": source, "destination": destination},
            cause=error,
        )


@dataclass
class CommandError(DiagnosticError):
    """External command failure. Used as a log payload, not raised."""

    error_code: ErrorCode = ErrorCode.COMMAND_FAILED

    @classmethod
    def timeout(cls, command: str, timeout_seconds: float) -> CommandError:
        """Create error for a command that exceeded its deadline."""
        return cls(
            message=f"Command timed out after {timeout_seconds}s",
            error_code=ErrorCode.COMMAND_TIMEOUT,
            context={"command": command, "timeout_seconds": timeout_seconds},
        )

    @classmethod
    def not_found(cls, command: str, error: OSError) -> CommandError:
        """Create error for a command that could not be started."""
        return cls(
            message=f"Command could not be started: {error}",
            error_code=ErrorCode.COMMAND_NOT_FOUND,
            context={"command": command},
            cause=error,
        )

    @classmethod
    def failed(cls, command: str, returncode: int) -> CommandError:
        """Create error for a non-zero exit status."""
        return cls(
            message=f"Command exited with status {returncode}",
            error_code=ErrorCode.COMMAND_FAILED,
            context={"command": command, "returncode": returncode},
        )


@dataclass
class StoreQueryError(DiagnosticError):
    """Document store query failure, reported through QueryOutcome."""

    error_code: ErrorCode = ErrorCode.STORE_CONNECTION_FAILED

    @classmethod
    def http_error(cls, method: str, path: str, status: int, body: str) -> StoreQueryError:
        """Create error for a non-2xx response."""
        truncated = body[:500] + "..." if len(body) > 500 else body
        return cls(
            message=f"{method} {path} returned HTTP {status}",
            error_code=ErrorCode.STORE_HTTP_ERROR,
            context={"method": method, "path": path, "status": status, "body": truncated},
        )

    @classmethod
    def connection_failed(cls, path: str, error: Exception) -> StoreQueryError:
        """Create error for transport-level failures."""
        return cls(
            message=f"Request to {path} failed: {error}",
            error_code=ErrorCode.STORE_CONNECTION_FAILED,
            context={"path": path},
            cause=error,
        )

    @classmethod
    def invalid_response(cls, path: str, reason: str) -> StoreQueryError:
        """Create error for unparseable response bodies."""
        return cls(
            message=f"Invalid response from {path}: {reason}",
            error_code=ErrorCode.STORE_INVALID_RESPONSE,
            context={"path": path, "reason": reason},
        )


@dataclass
class StorageError(DiagnosticError):
    """Raised when writing output or packaging the bundle fails."""

    error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED

    @classmethod
    def write_failed(cls, path: str, reason: str) -> StorageError:
        """Create error for write failure."""
        return cls(
            message=f"Failed to write output: {reason}",
            error_code=ErrorCode.STORAGE_WRITE_FAILED,
            context={"path": path, "reason": reason},
        )

    @classmethod
    def archive_failed(cls, path: str, reason: str) -> StorageError:
        """Create error for archive creation failure."""
        return cls(
            message=f"Failed to create bundle archive: {reason}",
            error_code=ErrorCode.STORAGE_ARCHIVE_FAILED,
            context={"path": path, "reason": reason},
        )


@dataclass
class UnexpectedFailure(DiagnosticError):
    """Wraps an uncaught error at a collection phase boundary."""

    error_code: ErrorCode = ErrorCode.UNKNOWN

    @classmethod
    def in_phase(cls, phase: str, error: Exception) -> UnexpectedFailure:
        """Create error for an unexpected exception inside a phase."""
        return cls(
            message=f"Phase '{phase}' failed unexpectedly: {error}",
            context={"phase": phase, "error_type": type(error).__name__},
            cause=error,
        )
