"""Exceptions raised by storage adapters, the factory and the manager.

Adapters raise these instead of backend-specific errors so callers can handle
every backend the same way.
"""


class StorageError(Exception):
    """Base exception for all storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Failed to reach or connect to the storage backend."""
    pass


class StorageNotFoundError(StorageError):
    """Requested resource was not found."""

    def __init__(self, resource_type: str, key: str):
        self.resource_type = resource_type
        self.key = key
        super().__init__(f"{resource_type} not found: {key}")


class StorageValidationError(StorageError):
    """Data validation failed before any I/O was attempted."""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class StorageConfigError(StorageValidationError):
    """A storage configuration is invalid (unknown type, missing fields)."""

    def __init__(self, errors: list[str] | str):
        super().__init__(errors)
        self.args = (f"Invalid storage config: {', '.join(self.errors)}",)


class StorageOperationError(StorageError):
    """A storage operation failed."""
    pass


class StorageRequestError(StorageOperationError):
    """A remote storage API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")


class StorageUnavailableError(StorageError):
    """No usable adapter could be initialized."""
    pass
