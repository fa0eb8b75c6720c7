"""Test configuration and fixtures.

Each test gets a fresh store, ledger and lifecycle. The HTTP client routes the
FastAPI app at the same lifecycle through a dependency override, so API tests
and service tests observe the same state.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from milestone_escrow.auth.roles import CALLER_HEADER, OperatorAuthority
from milestone_escrow.config import settings
from milestone_escrow.main import app
from milestone_escrow.runtime import get_lifecycle
from milestone_escrow.services.lifecycle import EscrowLifecycle
from milestone_escrow.services.notifications import Notifier
from milestone_escrow.services.store import EscrowStore
from milestone_escrow.services.transfers import InMemoryLedger

OPERATOR = "operator"
DEPOSITOR = "alice"
BENEFICIARY = "bob"
STRANGER = "mallory"
CUSTODY = "escrow-custody"

HARVEST_MILESTONES = [("Harvest", 40), ("Quality", 30), ("Ship", 30)]
HARVEST_AMOUNT = 1000


@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "operator_identities", [OPERATOR])
    object.__setattr__(settings, "custody_account", CUSTODY)
    object.__setattr__(settings, "webhook_url", "")
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def store(notifier: Notifier) -> EscrowStore:
    return EscrowStore(notifier=notifier)


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Ledger where the depositor holds 10,000 units and has approved custody for all of it."""
    ledger = InMemoryLedger(custody=CUSTODY)
    ledger.deposit(DEPOSITOR, 10_000)
    ledger.approve(DEPOSITOR, CUSTODY, 10_000)
    return ledger


@pytest.fixture
def lifecycle(store: EscrowStore, ledger: InMemoryLedger) -> EscrowLifecycle:
    return EscrowLifecycle(
        store=store,
        transfers=ledger,
        authorizer=OperatorAuthority({OPERATOR}),
    )


@pytest.fixture
def harvest_id(store: EscrowStore) -> int:
    """An unfunded escrow with the harvest/quality/ship milestones."""
    return store.create("Coffee harvest", BENEFICIARY, DEPOSITOR, HARVEST_AMOUNT, HARVEST_MILESTONES)


@pytest_asyncio.fixture
async def client(lifecycle: EscrowLifecycle) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client bound to this test's lifecycle."""
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def as_caller(identity: str) -> dict[str, str]:
    return {CALLER_HEADER: identity}
