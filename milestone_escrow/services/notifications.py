"""Escrow event notifications.

Every committed transition is appended to an in-memory audit log and handed
to subscribers. Delivery is fire-and-forget: a failing subscriber is logged
and never affects the operation that emitted the event. Async subscribers
(such as the webhook sender) run as background tasks.
"""

import asyncio
import hashlib
import hmac
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx

from milestone_escrow.config import settings
from milestone_escrow.models.escrow import EscrowAction, EscrowEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[EscrowEvent], Awaitable[None] | None]


class Notifier:
    """Append-only event log plus subscriber fan-out."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log: list[EscrowEvent] = []
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def emit(self, action: EscrowAction, escrow_id: int, **details: object) -> EscrowEvent:
        event = EscrowEvent(
            sequence=len(self._log),
            action=action,
            escrow_id=escrow_id,
            timestamp=self._clock(),
            details=details,
        )
        self._log.append(event)
        logger.info("Escrow event %s for escrow %s", action.value, escrow_id)

        for subscriber in list(self._subscribers):
            self._dispatch(subscriber, event)
        return event

    def events(self, escrow_id: int | None = None) -> list[EscrowEvent]:
        if escrow_id is None:
            return list(self._log)
        return [e for e in self._log if e.escrow_id == escrow_id]

    async def drain(self) -> None:
        """Wait for in-flight async deliveries (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, subscriber: Subscriber, event: EscrowEvent) -> None:
        try:
            result = subscriber(event)
        except Exception:
            logger.exception("Subscriber failed for %s on escrow %s", event.action.value, event.escrow_id)
            return

        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping async delivery of %s", event.action.value)
            if inspect.iscoroutine(result):
                result.close()
            return

        task = loop.create_task(self._deliver(result, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, delivery: Awaitable[None], event: EscrowEvent) -> None:
        try:
            await delivery
        except Exception:
            logger.exception("Async delivery failed for %s on escrow %s", event.action.value, event.escrow_id)


def sign_event_payload(secret: str, timestamp: str, body: str) -> str:
    """Generate HMAC-SHA256 signature for a webhook body."""
    message = f"{timestamp}.{body}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class WebhookSubscriber:
    """POST each escrow event as signed JSON to an external indexer."""

    def __init__(
        self,
        url: str,
        secret: str,
        timeout_seconds: float = 10,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_settings(cls) -> "WebhookSubscriber":
        return cls(settings.webhook_url, settings.webhook_secret, settings.webhook_timeout_seconds)

    def build_request(self, event: EscrowEvent) -> tuple[str, dict[str, str]]:
        body = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        timestamp = event.timestamp.isoformat()
        headers = {
            "Content-Type": "application/json",
            "X-Escrow-Event": event.action.value,
            "X-Escrow-Timestamp": timestamp,
            "X-Escrow-Signature": sign_event_payload(self.secret, timestamp, body),
        }
        return body, headers

    async def __call__(self, event: EscrowEvent) -> None:
        body, headers = self.build_request(event)
        if self._client is not None:
            resp = await self._client.post(self.url, content=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.post(self.url, content=body, headers=headers)
        resp.raise_for_status()
        logger.info(f"Webhook delivered: {event.action.value} → {self.url}")
