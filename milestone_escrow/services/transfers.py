"""Value transfer port and an in-memory ledger implementation.

The lifecycle only needs two moves: ``pull`` funds from a depositor into
escrow custody, and ``push`` funds out of custody to a recipient. Both report
success as a bool; an implementation that raises is treated as a failure.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from milestone_escrow.config import settings

logger = logging.getLogger(__name__)


class ValueTransferPort(Protocol):
    custody: str  # account that pull credits and push debits

    async def pull(self, source: str, destination: str, amount: int) -> bool: ...

    async def push(self, recipient: str, amount: int) -> bool: ...


@dataclass(frozen=True)
class TransferRecord:
    kind: str  # "pull" or "push"
    source: str
    destination: str
    amount: int


ReceiveHook = Callable[[str, int], Awaitable[None]]


class InMemoryLedger:
    """Balance ledger with allowance-gated pulls and recipient receive hooks.

    A receive hook runs after a push has credited the recipient and may call
    back into the escrow service. If the hook raises, the credit is reverted
    and the push reports failure.
    """

    def __init__(self, custody: str | None = None) -> None:
        self.custody = custody or settings.custody_account
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.transfers: list[TransferRecord] = []
        self._hooks: dict[str, ReceiveHook] = {}

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def deposit(self, account: str, amount: int) -> None:
        """Credit an external balance (test and dev funding)."""
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        self.balances[account] = self.balance_of(account) + amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Owner authorizes spender to pull up to amount."""
        if amount < 0:
            raise ValueError("Allowance cannot be negative")
        self.allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def on_receive(self, account: str, hook: ReceiveHook | None) -> None:
        if hook is None:
            self._hooks.pop(account, None)
        else:
            self._hooks[account] = hook

    def count(self, kind: str, destination: str | None = None) -> int:
        return sum(
            1 for t in self.transfers
            if t.kind == kind and (destination is None or t.destination == destination)
        )

    async def pull(self, source: str, destination: str, amount: int) -> bool:
        if amount <= 0:
            return False
        allowance = self.allowance(source, destination)
        if allowance < amount:
            logger.warning("Pull rejected: allowance %s < %s (%s → %s)", allowance, amount, source, destination)
            return False
        if self.balance_of(source) < amount:
            logger.warning("Pull rejected: insufficient balance for %s (%s < %s)", source, self.balance_of(source), amount)
            return False

        self.balances[source] -= amount
        self.balances[destination] = self.balance_of(destination) + amount
        self.allowances[(source, destination)] = allowance - amount
        self.transfers.append(TransferRecord("pull", source, destination, amount))
        return True

    async def push(self, recipient: str, amount: int) -> bool:
        if amount <= 0:
            return False
        if self.balance_of(self.custody) < amount:
            logger.warning("Push rejected: custody holds %s < %s", self.balance_of(self.custody), amount)
            return False

        self.balances[self.custody] -= amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        record = TransferRecord("push", self.custody, recipient, amount)
        self.transfers.append(record)

        hook = self._hooks.get(recipient)
        if hook is None:
            return True
        try:
            await hook(recipient, amount)
        except Exception:
            logger.exception("Receive hook for %s failed, reverting push", recipient)
            self._revert(record)
            return False
        except BaseException:
            logger.warning("Receive hook for %s interrupted, reverting push", recipient)
            self._revert(record)
            raise
        return True

    def _revert(self, record: TransferRecord) -> None:
        self.balances[record.destination] -= record.amount
        self.balances[record.source] += record.amount
        self.transfers = [t for t in self.transfers if t is not record]
