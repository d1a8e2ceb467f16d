from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import Protocol

import httpx

from caseflow.core.config import get_settings
from caseflow.domain.events import DomainEvent


logger = logging.getLogger(__name__)

# Hold references so fire-and-forget deliveries are not garbage collected mid-flight.
_pending_deliveries: set[asyncio.Task] = set()


class EventSink(Protocol):
    async def emit(self, event: DomainEvent) -> None: ...


class LoggingEventSink:
    # Default sink: record events in the service log for downstream log shippers.
    async def emit(self, event: DomainEvent) -> None:
        logger.info(
            "domain_event event_name=%s firm_id=%s actor_id=%s",
            event.event_name,
            event.firm_id,
            event.actor_id,
        )


def build_event_signature(secret: str, payload: bytes) -> str:
    # Compute HMAC SHA256 signatures so receivers can authenticate deliveries.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class WebhookEventSink:
    def __init__(self, *, url: str, secret: str | None, timeout_ms: int) -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout_ms / 1000.0

    async def emit(self, event: DomainEvent) -> None:
        body = json.dumps(event.to_envelope(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Caseflow-Event": event.event_name}
        if self._secret:
            headers["X-Caseflow-Signature"] = build_event_signature(self._secret, body)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, content=body, headers=headers)
        response.raise_for_status()


class RecordingEventSink:
    # In-memory sink for tests and local tooling.
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def emit(self, event: DomainEvent) -> None:
        self.events.append(event)


_default_sink: EventSink | None = None


def get_event_sink() -> EventSink:
    global _default_sink
    if _default_sink is None:
        settings = get_settings()
        if settings.events_webhook_url:
            _default_sink = WebhookEventSink(
                url=settings.events_webhook_url,
                secret=settings.events_webhook_secret,
                timeout_ms=settings.events_webhook_timeout_ms,
            )
        else:
            _default_sink = LoggingEventSink()
    return _default_sink


async def _deliver(sink: EventSink, event: DomainEvent) -> None:
    try:
        await sink.emit(event)
    except Exception as exc:  # noqa: BLE001 - notification fan-out never fails a committed change
        logger.warning("domain_event_emit_failed event_name=%s", event.event_name, exc_info=exc)


def publish(sink: EventSink, events: list[DomainEvent]) -> None:
    """Fire-and-forget delivery of events for an already committed change."""
    for event in events:
        task = asyncio.create_task(_deliver(sink, event))
        _pending_deliveries.add(task)
        task.add_done_callback(_pending_deliveries.discard)


async def drain_pending() -> None:
    # Await in-flight deliveries; used on shutdown and by tests.
    if _pending_deliveries:
        await asyncio.gather(*list(_pending_deliveries), return_exceptions=True)
