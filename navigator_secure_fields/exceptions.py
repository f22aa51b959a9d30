"""Error taxonomy for Secure Fields.

Every error specializes a builtin so callers that only know the builtin
(``RuntimeError``, ``PermissionError``, ``KeyError``, ``ValueError``) still
catch it.
"""
from enum import Enum
from typing import Optional


class SecureFieldError(Exception):
    """Base class for all Secure Fields errors."""


class EncryptionError(SecureFieldError, RuntimeError):
    """Sealing a value failed."""


class DecryptionError(SecureFieldError, RuntimeError):
    """An envelope could not be opened.

    Raised on tampering, on envelopes sealed under a rotated-out key
    generation, and on corrupted payloads. Never carries the underlying
    cryptographic detail.
    """

    def __init__(self, message: str = "Cannot decrypt value"):
        super().__init__(message)


class AccessDenied(SecureFieldError, PermissionError):
    """The caller failed the capability or ownership check."""


class InvalidToken(AccessDenied):
    """Missing, mismatched or expired anti-forgery token."""


class FieldNotFound(SecureFieldError, KeyError):
    """The field id does not resolve to a registered definition."""

    def __str__(self) -> str:
        return f"Unknown secure field: {self.args[0]}" if self.args else "Unknown secure field"


class InvalidValue(SecureFieldError, ValueError):
    """A new value was rejected before encryption."""

    def __init__(self, message: str, code: str = "invalid"):
        super().__init__(message)
        self.code = code


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    SERVER = "server"


class RevealClientError(SecureFieldError):
    """Classified failure of a reveal/save call seen from the client."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status: Optional[int] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK)

    def __repr__(self) -> str:
        return f"<RevealClientError kind={self.kind.value} status={self.status}>"
