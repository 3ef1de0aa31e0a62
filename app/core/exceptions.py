"""Custom exceptions for domain-specific errors"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain errors"""

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# Configuration Errors
class ConfigError(DomainException):
    """Raised when required configuration (e.g. the CAS encryption key) is missing"""

    error_code = "CONFIG_ERROR"


# Validation Errors
class ValidationError(DomainException):
    """Raised when input validation fails"""

    error_code = "VALIDATION_ERROR"


# Lookup Errors
class NotFoundError(DomainException):
    """Raised when a requested record does not exist"""

    error_code = "NOT_FOUND"


class ClientNotFoundError(NotFoundError):
    """Raised when client does not exist"""

    error_code = "CLIENT_NOT_FOUND"

    def __init__(self, client_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="Client not found",
            details=details or {"client_id": client_id},
        )


class CasDataNotFoundError(NotFoundError):
    """Raised when a client has no CAS data to return"""

    error_code = "CAS_DATA_NOT_FOUND"

    def __init__(self, client_id: str):
        super().__init__(
            message="No CAS data available for this client",
            details={"client_id": client_id},
        )


# State Conflicts
class ConflictError(DomainException):
    """Raised when an operation is not allowed in the record's current state"""

    error_code = "CONFLICT"


class ConcurrentModificationError(ConflictError):
    """Raised when a record changed between read and write"""

    error_code = "CONCURRENT_MODIFICATION"

    def __init__(self, client_id: str, expected_version: int):
        super().__init__(
            message="The CAS record was modified by another request. Please reload and try again.",
            details={"client_id": client_id, "expected_version": expected_version},
        )


# Credential Errors
class DecryptionError(DomainException):
    """Raised when a stored CAS password cannot be recovered"""

    error_code = "DECRYPTION_FAILED"


# Storage Errors
class StorageIOError(DomainException):
    """Raised when the staged document cannot be written, read or removed"""

    error_code = "STORAGE_IO_ERROR"


# External Service Errors
class PersistenceError(DomainException):
    """Raised when the client record store fails"""

    error_code = "PERSISTENCE_ERROR"


class SupabaseError(PersistenceError):
    """Raised when Supabase operation fails"""

    error_code = "DATABASE_ERROR"
