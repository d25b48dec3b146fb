# marketplace/events.py
"""Event records handed to the external notification service.

The marketplace only builds these values; delivery, retries and read state
belong to whoever implements `Notifier`.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Protocol, Union

from .utils import get_logger, utcnow

logger = get_logger("marketplace.events")


@dataclass(frozen=True)
class OutbidEvent:
    user_id: str
    listing_id: int
    message: str
    created_at: datetime = field(default_factory=utcnow)

    kind = "outbid"


@dataclass(frozen=True)
class SoldEvent:
    seller_id: str
    buyer_id: str
    listing_id: int
    final_price: Decimal
    created_at: datetime = field(default_factory=utcnow)

    kind = "sold"


Event = Union[OutbidEvent, SoldEvent]


class Notifier(Protocol):
    def notify(self, event: Event) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes each event to the log."""

    def notify(self, event: Event) -> None:
        logger.info("Event %s: %s", event.kind, asdict(event))


default_notifier = LoggingNotifier()


def dispatch_events(notifier: Notifier, events: Iterable[Event]) -> int:
    """Deliver events best-effort; returns how many the notifier accepted.

    A failing notifier is logged and never propagates to the caller.
    """
    delivered = 0
    for event in events:
        try:
            notifier.notify(event)
            delivered += 1
        except Exception:
            logger.exception("Failed to deliver %s event for listing %s", event.kind, event.listing_id)
    return delivered
