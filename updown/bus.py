"""
EventBus — typed pub/sub for engine notifications.

The engine publishes an immutable snapshot after every state mutation;
hosts (dashboards, notifiers, tests) subscribe instead of holding live
references to engine state.

Topic naming convention: ``domain.verb``
  - ``status.changed``  — payload is a ``TradingStatus`` dump
  - ``trade.recorded``  — payload is a ``Trade`` dump
  - ``engine.error``    — payload is an ``UpDownError.to_dict()``

Key features:
  - Typed envelope via ``TradingEvent`` (Pydantic)
  - Dead-letter isolation: handler errors never block others
  - Per-topic ring-buffer history (the CLI reports recent engine errors from it)

Usage::

    bus = EventBus()

    async def on_trade(event: TradingEvent) -> None:
        print(event.payload["status"])

    sub = bus.subscribe("trade.recorded", on_trade)
    await bus.publish("trade.recorded", trade.model_dump(mode="json"))
    bus.unsubscribe(sub)
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog
from opentelemetry import trace
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

STATUS_CHANGED = "status.changed"
TRADE_RECORDED = "trade.recorded"
ENGINE_ERROR = "engine.error"


class TradingEvent(BaseModel):
    """
    Typed message envelope for the bus.

    Attributes:
        topic: The topic this event was published to.
        sender: Identifier of the publishing component.
        payload: JSON-safe snapshot of the changed state.
        timestamp: UTC ISO-8601 timestamp of publication.
        correlation_id: Short id for tracing related events.
    """

    topic: str
    sender: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:16])


EventHandler = Callable[[TradingEvent], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """
    Opaque handle returned by ``EventBus.subscribe()``.

    Pass this to ``EventBus.unsubscribe()`` to remove the subscription.
    """

    id: str = field(default_factory=lambda: uuid4().hex[:12])
    topic: str = ""
    handler: EventHandler | None = field(default=None, repr=False)


_DEFAULT_HISTORY_LIMIT = 100


class EventBus:
    """In-memory event bus owned by one engine instance."""

    def __init__(self, *, history_limit: int = _DEFAULT_HISTORY_LIMIT) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._history: dict[str, deque[TradingEvent]] = {}
        self._history_limit = history_limit

    # ── Subscribe ────────────────────────────────────────────────────

    def subscribe(self, topic: str, handler: EventHandler) -> Subscription:
        """
        Register an async handler for every event published to ``topic``.

        Args:
            topic: One of the topic constants above.
            handler: Async callable ``(TradingEvent) -> None``.
        """
        sub = Subscription(topic=topic, handler=handler)
        self._subscriptions[sub.id] = sub
        logger.debug("bus_subscribed", sub_id=sub.id, topic=topic)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns ``True`` if it existed."""
        removed = self._subscriptions.pop(subscription.id, None)
        if removed:
            logger.debug("bus_unsubscribed", sub_id=subscription.id)
        return removed is not None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # ── Publish ──────────────────────────────────────────────────────

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any] | None = None,
        *,
        sender: str = "",
    ) -> TradingEvent:
        """
        Publish an event to a topic and await every subscribed handler.

        Returns:
            The published ``TradingEvent``.
        """
        event = TradingEvent(topic=topic, sender=sender, payload=payload or {})

        if topic not in self._history:
            self._history[topic] = deque(maxlen=self._history_limit)
        self._history[topic].append(event)

        matching: list[EventHandler] = [
            sub.handler
            for sub in self._subscriptions.values()
            if sub.handler is not None and sub.topic == topic
        ]

        with tracer.start_as_current_span(
            "bus.publish",
            attributes={
                "topic": topic,
                "sender": sender,
                "subscribers": len(matching),
                "correlation_id": event.correlation_id,
            },
        ) as span:
            if not matching:
                span.set_attribute("delivered", 0)
                return event

            results = await asyncio.gather(
                *(self._safe_invoke(handler, event) for handler in matching),
                return_exceptions=True,
            )

            delivered = sum(1 for r in results if r is None)
            span.set_attribute("delivered", delivered)
            span.set_attribute("errors", len(results) - delivered)

        return event

    # ── History ──────────────────────────────────────────────────────

    def history(self, topic: str, *, limit: int = 50) -> list[TradingEvent]:
        """Recent events for a topic, newest first."""
        buf = self._history.get(topic)
        if buf is None:
            return []
        return list(buf)[-limit:][::-1]

    # ── Internals ────────────────────────────────────────────────────

    @staticmethod
    async def _safe_invoke(handler: EventHandler, event: TradingEvent) -> None:
        """
        Invoke a handler with dead-letter isolation.

        The exception is logged and re-raised so ``asyncio.gather`` counts
        it; it never reaches other subscribers or the publisher.
        """
        with tracer.start_as_current_span(
            "bus.handler",
            attributes={
                "topic": event.topic,
                "handler": getattr(handler, "__name__", str(handler)),
            },
        ) as span:
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    "bus_handler_error",
                    topic=event.topic,
                    sender=event.sender,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                span.record_exception(exc)
                span.set_status(trace.StatusCode.ERROR, str(exc))
                raise

    def __repr__(self) -> str:
        return f"EventBus(subscriptions={self.subscription_count})"
