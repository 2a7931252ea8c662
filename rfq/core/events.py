"""
Engine notifications.

Three events are emitted: OfferCreated, DelegationChanged and OfferSettled.
The EventBus delivers each event synchronously to every subscriber in
subscription order and keeps an ordered history for replay and tests.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from rfq.crypto import bytes_to_hex
from rfq.utils.logger import get_logger

logger = get_logger("events")


def _render(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes_to_hex(bytes(value))
    return value


@dataclass(frozen=True)
class EngineEvent:
    """Base class for engine notifications."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = {key: _render(value) for key, value in asdict(self).items()}
        data["event"] = self.name
        return data


@dataclass(frozen=True)
class OfferCreated(EngineEvent):
    offer_id: int
    seller: bytes
    offer_token: bytes
    bid_token: bytes
    min_price: int
    min_bid_size: int
    total_size: int
    offer_token_decimals: int


@dataclass(frozen=True)
class DelegationChanged(EngineEvent):
    bidder: bytes
    new_signer: bytes


@dataclass(frozen=True)
class OfferSettled(EngineEvent):
    offer_id: int
    bid_id: int
    offer_token: bytes
    bid_token: bytes
    seller: bytes
    bidder: bytes
    bid_amount: int
    sell_amount: int


Subscriber = Callable[[EngineEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe for engine events.

    Events are emitted after the change they describe has committed, so a
    failing subscriber must not fail the operation. Its exception is logged
    and delivery continues with the next subscriber.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._history: List[EngineEvent] = []

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.remove(callback)

    def emit(self, event: EngineEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)

        logger.debug(f"{event.name}: {event.to_dict()}")
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber {callback!r} failed on {event.name}")

    def history(self, event_type: Optional[Type[EngineEvent]] = None) -> List[EngineEvent]:
        """Emitted events in order, optionally filtered by type."""
        with self._lock:
            events = list(self._history)
        if event_type is None:
            return events
        return [e for e in events if isinstance(e, event_type)]
