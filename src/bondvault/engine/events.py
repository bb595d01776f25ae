"""Structured event log shared by the strategy and the vault."""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """A single emitted event."""
    source: str  # Emitting participant (strategy, vault)
    name: str
    args: Tuple
    block: int


class EventLog:
    """Append-only event log; rolled back with the enclosing transaction."""

    _state_fields = ("_events",)

    def __init__(self, chain):
        self.chain = chain
        self._events: List[Event] = []
        chain.register(self)

    def emit(self, source: str, name: str, *args) -> Event:
        event = Event(source=source, name=name, args=tuple(args), block=self.chain.block)
        self._events.append(event)
        logger.info("%s.%s%s @%d", source, name, event.args, event.block)
        return event

    def named(self, name: str, source: Optional[str] = None) -> List[Event]:
        """All events with the given name, oldest first."""
        return [
            e for e in self._events
            if e.name == name and (source is None or e.source == source)
        ]

    def last(self, name: Optional[str] = None) -> Optional[Event]:
        """Most recent event, optionally filtered by name."""
        for event in reversed(self._events):
            if name is None or event.name == name:
                return event
        return None

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
