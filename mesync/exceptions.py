"""Errors raised by the meSync core."""


class MeSyncError(Exception):
    """Base class for meSync errors."""


class ValidationError(MeSyncError):
    """A definition failed validation at the save boundary."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(MeSyncError):
    """Referenced definition does not exist."""


class PersistenceError(MeSyncError):
    """A collection could not be written to the store."""
