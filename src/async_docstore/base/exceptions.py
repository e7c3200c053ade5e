from typing import Any, List, Optional, Sequence


class DocumentStoreError(Exception):
    """Base class for every error raised by the document store layer."""

    def __init__(self, message: str = "Document store error"):
        super().__init__(message)


class ConfigurationError(DocumentStoreError):
    """Exception raised when settings or a write concern are rejected."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message)


class InvalidArgument(DocumentStoreError, ValueError):
    """Exception raised for malformed builder input or call arguments."""

    def __init__(self, message: str = "Invalid argument"):
        super().__init__(message)


class ValidationFailed(DocumentStoreError):
    """Exception raised when a document violates its declared rules."""

    def __init__(self, violations: Sequence[Any], message: str = "Document invalid"):
        self.violations: List[Any] = list(violations)
        if self.violations:
            details = "; ".join(v.message for v in self.violations)
            message = f"{message}: {details}"
        super().__init__(message)


class CommandError(DocumentStoreError):
    """Exception raised when the store rejects a command."""

    def __init__(self, message: str = "Command error", code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class WriteError(CommandError):
    """Exception raised when the store rejects or fails to acknowledge a write."""


class Unsupported(DocumentStoreError):
    """Exception raised when the connected server lacks a capability."""

    def __init__(self, message: str = "Operation not supported by server"):
        super().__init__(message)
