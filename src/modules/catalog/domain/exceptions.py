"""Catalog domain exceptions."""

from src.core.domain.exceptions import DomainException, EntityNotFoundError, ValidationError


class CatalogError(DomainException):
    """Base class for catalog synchronization errors."""

    error_code = "CATALOG_ERROR"


class RemoteUnavailableError(CatalogError):
    """Remote store could not be reached (network, timeout, 5xx, bad payload)."""

    error_code = "REMOTE_UNAVAILABLE"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteRejectedError(CatalogError):
    """Remote store refused a write (permission, payload size, bad request)."""

    error_code = "REMOTE_REJECTED"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CacheCorruptError(CatalogError):
    """Local cache record could not be decoded. Never surfaced to callers."""

    error_code = "CACHE_CORRUPT"


class AppNotFoundError(EntityNotFoundError):
    """Raised when no app exists at the given category/index."""

    def __init__(self, category: str, index: int):
        super().__init__("App", f"{category}[{index}]")


class InvalidAppError(ValidationError):
    """Raised when an app cannot be placed where it was asked to go."""

    def __init__(self, message: str):
        super().__init__(f"Invalid app: {message}")
