"""Escrow error taxonomy.

Every error is raised by the service layer and surfaced to the caller of the
violated operation. The FastAPI app renders them as ``{"detail": ...}`` with
``status_code``.
"""


class EscrowError(Exception):
    """Base class for all escrow lifecycle errors."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(EscrowError):
    """Malformed creation input. ``constraint`` names the failed check."""

    status_code = 422

    def __init__(self, constraint: str, detail: str) -> None:
        super().__init__(detail)
        self.constraint = constraint


class Unauthorized(EscrowError):
    status_code = 403


class NotFound(EscrowError):
    status_code = 404


class InvalidIndex(EscrowError):
    status_code = 404


class StateError(EscrowError):
    """Operation not legal in the record's current state."""

    status_code = 409


class AlreadyFunded(StateError):
    pass


class AlreadyCompleted(StateError):
    pass


class AlreadyResolved(StateError):
    pass


class NotFunded(StateError):
    pass


class InvalidState(StateError):
    pass


class MilestonesIncomplete(StateError):
    """Release attempted with unmet milestones. ``first_index`` is the lowest unmet index."""

    def __init__(self, escrow_id: int, indices: list[int]) -> None:
        super().__init__(
            f"Escrow {escrow_id} has incomplete milestones: {indices} (first unmet index {indices[0]})"
        )
        self.indices = indices
        self.first_index = indices[0]


class TransferFailed(EscrowError):
    """The value transfer collaborator reported failure. Escrow state is unchanged."""

    status_code = 502
