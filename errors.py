"""
Error types shared by the gateways and the HTTP layer.

Each error carries a short public message (safe to return to clients) plus
the operation and entity id it happened on, for logging.
"""

from typing import Optional


class GrowTrackerError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None,
                 entity_id: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.operation = operation
        self.entity_id = entity_id

    def context(self) -> str:
        parts = []
        if self.operation:
            parts.append(f"op={self.operation}")
        if self.entity_id:
            parts.append(f"id={self.entity_id}")
        return " ".join(parts)


class ValidationError(GrowTrackerError):
    """Malformed or missing input."""
    status_code = 400
    public_message = "Invalid request"


class NotFoundError(GrowTrackerError):
    """Referenced entity is absent."""
    status_code = 404
    public_message = "Not found"


class PersistenceError(GrowTrackerError):
    """Database connectivity or constraint failure."""
    status_code = 500
    public_message = "Database error"


class DuplicateError(PersistenceError):
    """Unique index violation, e.g. a second plant with the same name."""
    status_code = 409
    public_message = "Duplicate entity"


class InvalidIdError(PersistenceError):
    """Id is not a well-formed ObjectId, so it cannot reference anything."""
    status_code = 404
    public_message = "Not found"


class StorageError(GrowTrackerError):
    """Object store failure."""
    status_code = 500
    public_message = "Storage error"
