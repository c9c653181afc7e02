"""Error taxonomy for board operations."""

from typing import Any


class SprintBoardError(Exception):
    """Base class for recoverable board errors."""


class NotFoundError(SprintBoardError):
    """Raised when a referenced task, sprint or project does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(SprintBoardError):
    """Raised when submitted data fails validation at the boundary."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: Any) -> "ValidationError":
        """Build from a pydantic ValidationError, keeping field messages."""
        errors = exc.errors()
        parts = []
        for err in errors:
            loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
            parts.append(f"{loc}: {err.get('msg')}")
        return cls("; ".join(parts) or str(exc), errors=errors)


class PersistenceError(SprintBoardError):
    """Raised when a storage backend call fails."""

    def __init__(self, backend: str, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{backend} {operation} failed{detail}")
        self.backend = backend
        self.operation = operation
        self.cause = cause
