"""Escrow record store: sequential ids, existence-checked access, no deletes.

Records live in an id-indexed list: the id of a record is its position, ids
are never reused and records are never removed, so terminal escrows stay
queryable as an audit trail.
"""

import copy
import dataclasses
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from milestone_escrow.config import settings
from milestone_escrow.errors import InvalidIndex, NotFound, ValidationError
from milestone_escrow.models.escrow import (
    EscrowAction,
    EscrowRecord,
    Milestone,
    MilestoneSpec,
)
from milestone_escrow.services.notifications import Notifier

logger = logging.getLogger(__name__)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_text(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def specs_from_arrays(descriptions: Sequence[str], weights: Sequence[int]) -> list[MilestoneSpec]:
    """Pair parallel description/weight arrays into milestone specs."""
    if len(descriptions) != len(weights):
        raise ValidationError(
            "milestone_lengths",
            f"Milestone descriptions and weights differ in length: {len(descriptions)} != {len(weights)}",
        )
    return [MilestoneSpec(description=d, weight=w) for d, w in zip(descriptions, weights)]


class EscrowStore:
    def __init__(
        self,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._records: list[EscrowRecord] = []
        self._notifier = notifier or Notifier()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def create(
        self,
        title: str,
        beneficiary: str,
        depositor: str,
        total_amount: int,
        milestone_specs: Sequence[MilestoneSpec | tuple[str, int]],
    ) -> int:
        """Validate and store a new escrow. Returns the assigned id.

        Nothing is stored, and no id is consumed, when validation fails.
        """
        specs = self._validate(title, beneficiary, depositor, total_amount, milestone_specs)

        escrow_id = len(self._records)
        record = EscrowRecord(
            id=escrow_id,
            title=title,
            beneficiary=beneficiary,
            depositor=depositor,
            total_amount=total_amount,
            milestones=[Milestone(description=s.description, weight=s.weight) for s in specs],
            created_at=self._clock(),
        )
        self._records.append(record)
        logger.info("Created escrow %s (%s) for %s units", escrow_id, title, total_amount)

        self._notifier.emit(
            EscrowAction.CREATED,
            escrow_id,
            title=title,
            beneficiary=beneficiary,
            depositor=depositor,
            total_amount=total_amount,
        )
        return escrow_id

    def get(self, escrow_id: int) -> EscrowRecord:
        """Return the live record. Callers outside the lifecycle should not mutate it."""
        if not _is_int(escrow_id) or escrow_id < 0 or escrow_id >= len(self._records):
            raise NotFound(f"Escrow {escrow_id} not found")
        return self._records[escrow_id]

    def get_milestone(self, escrow_id: int, index: int) -> Milestone:
        record = self.get(escrow_id)
        if not _is_int(index) or index < 0 or index >= len(record.milestones):
            raise InvalidIndex(
                f"Milestone index {index} out of range for escrow {escrow_id} "
                f"({len(record.milestones)} milestones)"
            )
        return record.milestones[index]

    def count(self) -> int:
        return len(self._records)

    def page(self, offset: int = 0, limit: int | None = None) -> list[EscrowRecord]:
        """Id-ordered page of records."""
        offset = max(offset, 0)
        end = len(self._records) if limit is None else offset + max(limit, 0)
        return self._records[offset:end]

    def snapshot(self, escrow_id: int) -> EscrowRecord:
        return copy.deepcopy(self.get(escrow_id))

    def restore(self, snapshot: EscrowRecord) -> None:
        """Put a record back to a previously taken snapshot, in place."""
        live = self.get(snapshot.id)
        restored = copy.deepcopy(snapshot)
        for f in dataclasses.fields(EscrowRecord):
            setattr(live, f.name, getattr(restored, f.name))

    def _validate(
        self,
        title: object,
        beneficiary: object,
        depositor: object,
        total_amount: object,
        milestone_specs: Sequence[MilestoneSpec | tuple[str, int]],
    ) -> list[MilestoneSpec]:
        if not _is_text(title):
            raise ValidationError("title", "Title must be a non-empty string")
        if len(title) > settings.max_title_length:
            raise ValidationError("title_length", f"Title exceeds {settings.max_title_length} characters")
        if not _is_text(beneficiary):
            raise ValidationError("beneficiary", "Beneficiary identity is required")
        if not _is_text(depositor):
            raise ValidationError("depositor", "Depositor identity is required")
        if not _is_int(total_amount) or total_amount <= 0:
            raise ValidationError("total_amount", "Total amount must be a positive integer")

        if not milestone_specs:
            raise ValidationError("milestones", "At least one milestone is required")
        if len(milestone_specs) > settings.max_milestones:
            raise ValidationError("milestone_count", f"At most {settings.max_milestones} milestones are allowed")

        specs = []
        for i, spec in enumerate(milestone_specs):
            if not isinstance(spec, MilestoneSpec):
                if not isinstance(spec, (tuple, list)) or len(spec) != 2:
                    raise ValidationError("milestones", f"Milestone {i} must be a (description, weight) pair")
                spec = MilestoneSpec(description=spec[0], weight=spec[1])
            specs.append(spec)

        for i, spec in enumerate(specs):
            if not _is_text(spec.description):
                raise ValidationError("milestone_description", f"Milestone {i} description must be non-empty")
            if not _is_int(spec.weight) or spec.weight <= 0:
                raise ValidationError("milestone_weight", f"Milestone {i} weight must be a positive integer")

        total_weight = sum(s.weight for s in specs)
        if total_weight != settings.milestone_weight_total:
            raise ValidationError(
                "weight_sum",
                f"Milestone weights must sum to {settings.milestone_weight_total}, got {total_weight}",
            )
        return specs
