"""Escrow record, milestone and audit event models."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class EscrowStatus(enum.Enum):
    CREATED = "created"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"


class EscrowAction(enum.Enum):
    CREATED = "escrow.created"
    FUNDED = "escrow.funded"
    MILESTONE_COMPLETED = "escrow.milestone_completed"
    RELEASED = "escrow.released"
    REFUNDED = "escrow.refunded"


@dataclass(frozen=True)
class MilestoneSpec:
    """Creation input for one milestone."""
    description: str
    weight: int


@dataclass
class Milestone:
    description: str
    weight: int  # Percent of total_amount
    completed: bool = False
    completed_at: datetime | None = None


@dataclass
class EscrowRecord:
    id: int
    title: str
    beneficiary: str
    depositor: str
    total_amount: int
    milestones: list[Milestone]
    created_at: datetime
    funded: bool = False
    completed: bool = False  # Released to beneficiary
    refunded: bool = False
    funded_at: datetime | None = None
    completed_at: datetime | None = None  # Set by whichever of release/refund happens

    @property
    def status(self) -> EscrowStatus:
        if self.completed:
            return EscrowStatus.RELEASED
        if self.refunded:
            return EscrowStatus.REFUNDED
        if self.funded:
            return EscrowStatus.FUNDED
        return EscrowStatus.CREATED

    @property
    def resolved(self) -> bool:
        return self.completed or self.refunded

    @property
    def progress(self) -> int:
        """Sum of completed milestone weights, 0-100."""
        return sum(m.weight for m in self.milestones if m.completed)

    @property
    def incomplete_indices(self) -> list[int]:
        return [i for i, m in enumerate(self.milestones) if not m.completed]

    @property
    def all_milestones_completed(self) -> bool:
        return all(m.completed for m in self.milestones)


@dataclass(frozen=True)
class EscrowEvent:
    """Append-only audit entry. Never mutated once recorded."""
    sequence: int
    action: EscrowAction
    escrow_id: int
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "event": self.action.value,
            "escrow_id": self.escrow_id,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
