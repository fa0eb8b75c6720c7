"""Process-wide service wiring and the FastAPI dependency that exposes it."""

from milestone_escrow.auth.roles import OperatorAuthority
from milestone_escrow.config import settings
from milestone_escrow.services.lifecycle import EscrowLifecycle
from milestone_escrow.services.notifications import Notifier, WebhookSubscriber
from milestone_escrow.services.store import EscrowStore
from milestone_escrow.services.transfers import InMemoryLedger


def build_lifecycle(ledger: InMemoryLedger | None = None) -> EscrowLifecycle:
    notifier = Notifier()
    if settings.webhook_enabled:
        notifier.subscribe(WebhookSubscriber.from_settings())
    store = EscrowStore(notifier=notifier)
    return EscrowLifecycle(
        store=store,
        transfers=ledger or InMemoryLedger(custody=settings.custody_account),
        authorizer=OperatorAuthority(),
    )


ledger = InMemoryLedger(custody=settings.custody_account)
lifecycle = build_lifecycle(ledger)


def get_lifecycle() -> EscrowLifecycle:
    return lifecycle
