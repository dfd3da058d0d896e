"""Error taxonomy shared by the registry, scheduler, tracker and engine."""

from typing import Any, Optional


class FleetCoordinationError(RuntimeError):
    """Base exception carrying a machine-readable code for the API layer."""

    code = "COORDINATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(FleetCoordinationError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Optional[str]) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(FleetCoordinationError):
    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, entity_id: str, current: Any, requested: Any,
                 detail: Optional[str] = None) -> None:
        message = f"{entity} {entity_id} cannot move from {_name(current)} to {_name(requested)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.requested = requested


class FleetValidationError(FleetCoordinationError):
    code = "VALIDATION_ERROR"


class ConflictError(FleetCoordinationError):
    code = "CONFLICT"


class AlreadyTerminalError(FleetCoordinationError):
    code = "ALREADY_TERMINAL"

    def __init__(self, entity: str, entity_id: str, status: Any) -> None:
        super().__init__(f"{entity} {entity_id} is already {_name(status)}")
        self.entity = entity
        self.entity_id = entity_id
        self.status = status


class PersistenceError(FleetCoordinationError):
    """Raised when the storage collaborator rejects a change set."""
    code = "PERSISTENCE_ERROR"


def _name(value: Any) -> str:
    return getattr(value, 'value', str(value))


__all__ = [
    "AlreadyTerminalError",
    "ConflictError",
    "FleetCoordinationError",
    "FleetValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
]
