from __future__ import annotations


class TreeError(Exception):
    """Base class for errors raised by tree mutations."""


class ValidationError(TreeError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def as_dict(self) -> dict:
        return {"error": self.message, "field": self.field}


class NotFoundError(TreeError):
    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id

    def as_dict(self) -> dict:
        return {"error": f"{self.entity} not found", "id": self.entity_id}


class PersistenceError(TreeError):
    """The local store rejected a write; the in-memory change was rolled back."""
