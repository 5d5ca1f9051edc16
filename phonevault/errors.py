"""Error Types - Typed failures for startup and request handling

Every error carries the HTTP status it maps to and a human-readable message.
Startup errors (configuration, connection) are fatal; request errors are turned
into JSON responses by the handlers registered in phonevault.main.
"""

from typing import Any, Dict, Optional


class PhoneVaultError(Exception):
    """Base application error"""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON response"""
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


# ============================================================================
# STARTUP ERRORS (fatal)
# ============================================================================

class ConfigurationError(PhoneVaultError):
    """A required setting is missing or malformed"""


class KeyServiceConnectionError(PhoneVaultError):
    """The key-management service cannot be reached or the key is unusable"""

    status_code = 503


class DatabaseConnectionError(PhoneVaultError):
    """The record store cannot be reached"""

    status_code = 503


# ============================================================================
# REQUEST ERRORS
# ============================================================================

class ValidationError(PhoneVaultError):
    status_code = 400


class RecordNotFound(PhoneVaultError):
    status_code = 404

    def __init__(self, record_id: str):
        super().__init__("The Phone number not found", details=f"no record with id {record_id}")
        self.record_id = record_id


class KeyNotRegistered(PhoneVaultError):
    """A purpose was resolved that the registry was never given"""

    def __init__(self, purpose: str):
        super().__init__("Encryption key not configured", details=f"no key registered for purpose {purpose}")
        self.purpose = purpose


class EncryptionFailure(PhoneVaultError):
    pass


class DecryptionFailure(PhoneVaultError):
    pass


class DecodingFailure(PhoneVaultError):
    """Stored payload is not valid base64"""


class StorageFailure(PhoneVaultError):
    pass


class RequestTimeout(PhoneVaultError):
    status_code = 504
