# realtime.py — Row-change notifications for the Remote Store
# Writers publish one ChangeEvent per committed write; subscribers (each session's
# cache) re-fetch the affected table. Delivery is per-table, in subscription order,
# with no global ordering across tables.
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger("iti-tech.realtime")

ALL_TABLES = "*"

ChangeHandler = Callable[["ChangeEvent"], Awaitable[None]]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str  # INSERT / UPDATE / DELETE
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ChangeFeed:
    """Manages change subscriptions per table"""

    def __init__(self):
        self._subscriptions: Dict[str, List[ChangeHandler]] = {}

    def subscribe(self, table: str, handler: ChangeHandler) -> Callable[[], None]:
        """Register a handler for one table (or ALL_TABLES). Returns an unsubscribe function."""
        self._subscriptions.setdefault(table, []).append(handler)

        def _unsubscribe():
            handlers = self._subscriptions.get(table)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._subscriptions[table]

        return _unsubscribe

    async def publish(self, event: ChangeEvent) -> None:
        handlers = list(self._subscriptions.get(event.table, [])) + list(self._subscriptions.get(ALL_TABLES, []))
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                # One failing subscriber must not block delivery to the others
                logger.error(f"Change handler failed for {event.table}/{event.event_type}: {e}", exc_info=True)

    def get_stats(self) -> dict:
        return {
            "tables": len(self._subscriptions),
            "handlers": sum(len(h) for h in self._subscriptions.values()),
        }
