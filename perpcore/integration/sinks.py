"""
Notification sinks for committed engine effects.

Sinks are purely observational: the host publishes every ``Effect`` of a
committed step, in order, and nothing a sink does feeds back into the engine.
"""

from __future__ import annotations

import logging
from typing import List, Protocol

from ..core.types import Effect, Event

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def publish(self, effect: Effect) -> None: ...


class MemorySink:
    """Collects effects in memory (tests, demos)."""

    def __init__(self) -> None:
        self.effects: List[Effect] = []

    def publish(self, effect: Effect) -> None:
        self.effects.append(effect)

    def events(self) -> List[Event]:
        return [e.event for e in self.effects]

    def of(self, event: Event) -> List[Effect]:
        return [e for e in self.effects if e.event is event]

    def clear(self) -> None:
        self.effects.clear()


class LoggingSink:
    """Writes one log record per effect."""

    def __init__(self, level: int = logging.INFO, log: logging.Logger | None = None) -> None:
        self.level = level
        self.log = log or logger

    def publish(self, effect: Effect) -> None:
        fields = " ".join(f"{k}={v}" for k, v in sorted(effect.data.items()))
        self.log.log(
            self.level,
            "%s market=%s account=%s position=%s order=%s actor=%s t=%d %s",
            effect.event.value,
            effect.market_id or "-",
            effect.account_id or "-",
            effect.position_id or "-",
            effect.order_id or "-",
            effect.actor or "-",
            effect.timestamp,
            fields,
        )
