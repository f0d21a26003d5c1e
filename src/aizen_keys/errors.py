from __future__ import annotations

import secrets


class KeyServiceError(Exception):
    """Base exception for the key server"""

    status_code = 500
    reason = "server_error"
    default_message = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredential(KeyServiceError):
    """Raised when the admin secret supplied by a caller does not match"""

    status_code = 401
    reason = "invalid_credential"
    default_message = "Invalid admin password"


class InvalidArgument(KeyServiceError):
    """Raised for malformed caller input such as a non-integer duration"""

    status_code = 400
    reason = "invalid_argument"
    default_message = "Invalid argument"


class KeyNotFound(KeyServiceError):
    """Raised when no record matches a token"""

    status_code = 404
    reason = "not_found"
    default_message = "Key not found"


class KeyDeactivated(KeyServiceError):
    """Raised when validating a key that has been deactivated"""

    status_code = 403
    reason = "deactivated"
    default_message = "Key has been deactivated"


class KeyExpired(KeyServiceError):
    """Raised when validating a key past its expiry"""

    status_code = 403
    reason = "expired"
    default_message = "Key has expired"


class StoreError(KeyServiceError):
    """Raised when the persisted key store cannot be used"""

    reason = "store_error"
    default_message = "Key store error"


class StoreUnavailable(StoreError):
    """Raised when the key store cannot be read or written"""

    reason = "store_unavailable"
    default_message = "Key store unavailable"


class StoreCorrupt(StoreError):
    """Raised in strict mode when the key store content cannot be decoded"""

    reason = "store_corrupt"
    default_message = "Key store is corrupt"


def constant_time_compare(lhs: bytes | str, rhs: bytes | str) -> bool:
    """Compare two secrets without leaking timing information"""
    if isinstance(lhs, str):
        lhs = lhs.encode("utf-8")
    if isinstance(rhs, str):
        rhs = rhs.encode("utf-8")
    return secrets.compare_digest(lhs, rhs)


__all__ = [
    "InvalidArgument",
    "InvalidCredential",
    "KeyDeactivated",
    "KeyExpired",
    "KeyNotFound",
    "KeyServiceError",
    "StoreCorrupt",
    "StoreError",
    "StoreUnavailable",
    "constant_time_compare",
]
