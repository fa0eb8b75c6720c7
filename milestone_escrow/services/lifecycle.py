"""Escrow lifecycle: fund, complete milestones, release, refund.

State machine per record: created → funded → {released | refunded}.

Every transfer-triggering operation writes its gating flag *before* awaiting
the value transfer, and marks the record in flight until the transfer has
settled. A call that arrives during the transfer, from the recipient's
callback or from any other task, sees the post-transition state and is
rejected, so at most one transfer happens per record per transition.

A transfer settles on its real outcome. If it fails the record is restored
from a snapshot taken before the flag write. If the caller is cancelled while
the transfer is still running, the transfer keeps going and the record is
committed or restored once it finishes.
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime

from milestone_escrow.auth.roles import Authorizer, OperatorAuthority
from milestone_escrow.config import settings
from milestone_escrow.errors import (
    AlreadyCompleted,
    AlreadyFunded,
    AlreadyResolved,
    InvalidState,
    MilestonesIncomplete,
    NotFunded,
    TransferFailed,
    Unauthorized,
)
from milestone_escrow.models.escrow import (
    EscrowAction,
    EscrowEvent,
    EscrowRecord,
    Milestone,
    MilestoneSpec,
)
from milestone_escrow.services.guard import RecordGuard
from milestone_escrow.services.store import EscrowStore
from milestone_escrow.services.transfers import ValueTransferPort

logger = logging.getLogger(__name__)

Move = Callable[[], Awaitable[bool]]


async def _call(move: Move) -> bool:
    return await move()


class EscrowLifecycle:
    def __init__(
        self,
        store: EscrowStore,
        transfers: ValueTransferPort,
        authorizer: Authorizer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._transfers = transfers
        self._authorizer = authorizer or OperatorAuthority()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._guard = RecordGuard()
        self._pending: set[asyncio.Future] = set()

    @property
    def store(self) -> EscrowStore:
        return self._store

    @property
    def custody_account(self) -> str:
        return self._transfers.custody

    # --- Mutations ---

    async def create_escrow(
        self,
        caller: str,
        title: str,
        beneficiary: str,
        depositor: str,
        total_amount: int,
        milestone_specs: Sequence[MilestoneSpec | tuple[str, int]],
    ) -> int:
        """Operator opens a new escrow. Returns its id."""
        self._require_operator(caller, "create escrows")
        return self._store.create(title, beneficiary, depositor, total_amount, milestone_specs)

    async def fund(self, escrow_id: int, caller: str) -> EscrowRecord:
        """Depositor moves total_amount into custody."""
        record = self._store.get(escrow_id)
        async with self._guard.hold(escrow_id):
            if caller != record.depositor:
                raise Unauthorized(f"Only the depositor can fund escrow {escrow_id}")
            if record.funded:
                raise AlreadyFunded(f"Escrow {escrow_id} is already funded")
            if record.refunded:
                raise InvalidState(f"Escrow {escrow_id} was refunded and cannot be funded")
            self._reject_in_flight(escrow_id)

            snapshot = self._store.snapshot(escrow_id)
            record.funded = True
            record.funded_at = self._clock()
            self._guard.begin_transfer(escrow_id)

        def funded() -> None:
            logger.info("Escrow %s funded by %s with %s units", escrow_id, caller, record.total_amount)
            self._store.notifier.emit(
                EscrowAction.FUNDED,
                escrow_id,
                depositor=record.depositor,
                amount=record.total_amount,
            )

        await self._transfer(
            snapshot,
            "fund",
            lambda: self._transfers.pull(caller, self.custody_account, record.total_amount),
            funded,
        )
        return copy.deepcopy(record)

    async def complete_milestone(self, escrow_id: int, index: int, caller: str) -> Milestone:
        """Operator marks one milestone done. Any order is allowed."""
        record = self._store.get(escrow_id)
        async with self._guard.hold(escrow_id):
            self._require_operator(caller, "complete milestones")
            if not record.funded:
                raise NotFunded(f"Escrow {escrow_id} is not funded")
            if record.resolved:
                raise AlreadyResolved(f"Escrow {escrow_id} is already {record.status.value}")
            milestone = self._store.get_milestone(escrow_id, index)
            if milestone.completed:
                raise AlreadyCompleted(f"Milestone {index} of escrow {escrow_id} is already completed")
            self._reject_in_flight(escrow_id)

            milestone.completed = True
            milestone.completed_at = self._clock()

            logger.info("Escrow %s milestone %s completed (progress %s%%)", escrow_id, index, record.progress)
            self._store.notifier.emit(
                EscrowAction.MILESTONE_COMPLETED,
                escrow_id,
                index=index,
                description=milestone.description,
                weight=milestone.weight,
                progress=record.progress,
            )
            return copy.deepcopy(milestone)

    async def release(self, escrow_id: int, caller: str) -> EscrowRecord:
        """Pay total_amount to the beneficiary once every milestone is complete."""
        record = self._store.get(escrow_id)
        async with self._guard.hold(escrow_id):
            self._require_operator(caller, "release funds")
            self._require_open(record)
            incomplete = record.incomplete_indices
            if incomplete:
                raise MilestonesIncomplete(escrow_id, incomplete)
            self._reject_in_flight(escrow_id)

            snapshot = self._store.snapshot(escrow_id)
            record.completed = True
            record.completed_at = self._clock()
            self._guard.begin_transfer(escrow_id)

        def released() -> None:
            logger.info("Escrow %s released %s units to %s", escrow_id, record.total_amount, record.beneficiary)
            self._store.notifier.emit(
                EscrowAction.RELEASED,
                escrow_id,
                beneficiary=record.beneficiary,
                amount=record.total_amount,
            )

        await self._transfer(
            snapshot,
            "release",
            lambda: self._transfers.push(record.beneficiary, record.total_amount),
            released,
        )
        return copy.deepcopy(record)

    async def refund(self, escrow_id: int, caller: str) -> EscrowRecord:
        """Return total_amount to the depositor. No milestone requirement."""
        record = self._store.get(escrow_id)
        async with self._guard.hold(escrow_id):
            self._require_operator(caller, "refund escrows")
            self._require_open(record)
            self._reject_in_flight(escrow_id)

            snapshot = self._store.snapshot(escrow_id)
            record.refunded = True
            record.completed_at = self._clock()
            self._guard.begin_transfer(escrow_id)

        def refunded() -> None:
            logger.info("Escrow %s refunded %s units to %s", escrow_id, record.total_amount, record.depositor)
            self._store.notifier.emit(
                EscrowAction.REFUNDED,
                escrow_id,
                depositor=record.depositor,
                amount=record.total_amount,
            )

        await self._transfer(
            snapshot,
            "refund",
            lambda: self._transfers.push(record.depositor, record.total_amount),
            refunded,
        )
        return copy.deepcopy(record)

    async def drain(self) -> None:
        """Wait until transfers left running by cancelled callers have settled."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # --- Queries ---

    def get_escrow(self, escrow_id: int) -> EscrowRecord:
        return self._store.snapshot(escrow_id)

    def get_milestone(self, escrow_id: int, index: int) -> Milestone:
        return copy.deepcopy(self._store.get_milestone(escrow_id, index))

    def milestone_count(self, escrow_id: int) -> int:
        return len(self._store.get(escrow_id).milestones)

    def progress(self, escrow_id: int) -> int:
        return self._store.get(escrow_id).progress

    def all_milestones_completed(self, escrow_id: int) -> bool:
        return self._store.get(escrow_id).all_milestones_completed

    def count(self) -> int:
        return self._store.count()

    def list_escrows(self, offset: int = 0, limit: int | None = None) -> list[EscrowRecord]:
        if limit is None or limit > settings.max_page_size:
            limit = settings.max_page_size
        return [copy.deepcopy(r) for r in self._store.page(offset, limit)]

    def events(self, escrow_id: int) -> list[EscrowEvent]:
        self._store.get(escrow_id)
        return self._store.notifier.events(escrow_id)

    # --- Internals ---

    def _require_operator(self, caller: str, action: str) -> None:
        if not self._authorizer.is_operator(caller):
            raise Unauthorized(f"Only the operator can {action}")

    @staticmethod
    def _require_open(record: EscrowRecord) -> None:
        if not record.funded:
            raise NotFunded(f"Escrow {record.id} is not funded")
        if record.resolved:
            raise AlreadyResolved(f"Escrow {record.id} is already {record.status.value}")

    def _reject_in_flight(self, escrow_id: int) -> None:
        if self._guard.in_flight(escrow_id):
            raise InvalidState(f"Escrow {escrow_id} has a transfer in progress")

    async def _transfer(
        self,
        snapshot: EscrowRecord,
        operation: str,
        move: Move,
        on_commit: Callable[[], None],
    ) -> None:
        moving = asyncio.ensure_future(_call(move))
        self._pending.add(moving)
        try:
            await asyncio.shield(moving)
        except asyncio.CancelledError:
            if moving.done() and not moving.cancelled():
                self._settle(snapshot, operation, moving, on_commit)
                raise
            if not moving.done():
                logger.warning(
                    "Escrow %s %s caller cancelled, settling when the transfer finishes",
                    snapshot.id,
                    operation,
                )
                moving.add_done_callback(lambda m: self._settle(snapshot, operation, m, on_commit))
                raise
        except Exception:
            pass  # settled below from the task's outcome

        failure = self._settle(snapshot, operation, moving, on_commit)
        if failure is not None:
            raise failure

    def _settle(
        self,
        snapshot: EscrowRecord,
        operation: str,
        moving: asyncio.Future,
        on_commit: Callable[[], None],
    ) -> TransferFailed | None:
        self._pending.discard(moving)
        self._guard.end_transfer(snapshot.id)

        if moving.cancelled():
            failure = TransferFailed(f"Transfer for {operation} of escrow {snapshot.id} was cancelled")
        elif moving.exception() is not None:
            cause = moving.exception()
            failure = TransferFailed(f"Transfer for {operation} of escrow {snapshot.id} failed: {cause}")
            failure.__cause__ = cause
        elif not moving.result():
            failure = TransferFailed(f"Transfer for {operation} of escrow {snapshot.id} was rejected")
        else:
            on_commit()
            return None

        self._store.restore(snapshot)
        logger.warning("Escrow %s %s rolled back after transfer failure", snapshot.id, operation)
        return failure
