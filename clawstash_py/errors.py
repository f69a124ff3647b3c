"""
Exceptions raised by Clawstash.

Every error carries a human-readable message plus an optional ``details``
mapping that is appended when the error is rendered.
"""

from typing import Any, Dict, Iterable, Optional


class ClawstashError(Exception):
    """Base exception for all Clawstash errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(ClawstashError, ValueError):
    """Raised for bad local input. Never retried."""

    pass


class InvalidBucketNameError(ValidationError):
    """Raised when a bucket name is not a valid S3 bucket name."""

    pass


class UnknownCategoryError(ValidationError):
    """Raised when a category name is not one of the known categories."""

    def __init__(self, name: str, valid: Iterable[str]):
        self.name = name
        self.valid = list(valid)
        super().__init__(
            f"Unknown category: {name}. Valid categories: {', '.join(self.valid)}"
        )


class InvalidTimeExpressionError(ValidationError):
    """Raised when a point-in-time expression cannot be parsed."""

    pass


class ConfigurationError(ClawstashError):
    """Raised when the configuration is missing or inconsistent."""

    pass


class CredentialError(ClawstashError):
    """Raised when credentials cannot be obtained."""

    pass


class MissingCredentialError(CredentialError):
    """Raised when no passphrase could be resolved."""

    pass


class StorageProvisioningError(ClawstashError):
    """Raised when a bucket cannot be created."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        self.status_code = status_code
        self.body = body
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)


class ProcessExecutionError(ClawstashError):
    """Raised when a restic invocation exits nonzero, times out or overflows."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        details: Dict[str, Any] = {}
        if returncode is not None:
            details["returncode"] = returncode
        if timed_out:
            details["timed_out"] = True
        super().__init__(message, details)


class RepositoryLockedError(ProcessExecutionError):
    """Raised when restic refuses to run because another process holds the lock."""

    pass


class ProcessProtocolError(ClawstashError):
    """Raised when restic exits cleanly but its output is unusable."""

    pass
