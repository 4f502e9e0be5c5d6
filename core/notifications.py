"""
Migration-completed event and its dispatcher.

Sinks (analytics, webhooks, ...) receive the event after a session reaches a
terminal state. A failing sink is logged and never affects the session.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class MigrationCompletedEvent:
    session_id: str
    status: str
    migration_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'status': self.status,
            'migrationMetadata': self.migration_metadata,
        }


Sink = Callable[[MigrationCompletedEvent], None]


class NotificationDispatcher:
    def __init__(self, sinks: Optional[List[Sink]] = None):
        self._sinks: List[Sink] = list(sinks or [])

    def register(self, sink: Sink):
        self._sinks.append(sink)

    def dispatch(self, event: MigrationCompletedEvent) -> int:
        """Deliver event to every sink; returns how many succeeded"""
        delivered = 0
        for sink in self._sinks:
            try:
                sink(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Notification sink {getattr(sink, '__name__', sink)!r} failed "
                             f"for session {event.session_id}: {e}")
        return delivered


def logging_sink(event: MigrationCompletedEvent):
    """Default sink: one summary line per finished migration"""
    meta = event.migration_metadata or {}
    logger.info(
        f"Migration {event.session_id} {event.status}: "
        f"{meta.get('totalRowsMigrated', 0)} rows, "
        f"{len(meta.get('tablesCompleted', []))}/{meta.get('totalTables', 0)} tables"
    )
