#!/usr/bin/env python3
"""
dbshift Progress Session Store

Process-wide table of migration sessions. The store owns every
MigrationSession; writers (the orchestrator) hold only a session id and go
through update(), readers get snapshots.

The lock guards map access only and is never held while listeners run.
Sessions in a terminal state (completed, error, cancelled) are immutable.
"""

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_SESSION_LOGS = 500


class SessionStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != SessionStatus.RUNNING


class SessionType(Enum):
    SCHEMA = "schema"
    DATA = "data"
    FULL = "full"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class MigrationSession:
    session_id: str
    type: SessionType
    stage: str = "Initializing"
    current_job: str = ""
    status: SessionStatus = SessionStatus.RUNNING
    progress: int = 0
    total_items: int = 0
    completed_items: int = 0
    start_time: str = field(default_factory=_now_iso)
    end_time: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    cancel_requested: bool = False
    logs: List[str] = field(default_factory=list)
    migration_metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase)"""
        return {
            'sessionId': self.session_id,
            'type': self.type.value,
            'stage': self.stage,
            'currentJob': self.current_job,
            'status': self.status.value,
            'progress': self.progress,
            'totalItems': self.total_items,
            'completedItems': self.completed_items,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'error': self.error,
            'errorCategory': self.error_category,
            'cancelRequested': self.cancel_requested,
            'logs': list(self.logs),
            'migrationMetadata': copy.deepcopy(self.migration_metadata),
        }


Listener = Callable[[MigrationSession], None]

# Fields writers may set through update()
_MUTABLE_FIELDS = frozenset({
    'stage', 'current_job', 'progress', 'total_items', 'completed_items',
    'migration_metadata', 'error', 'error_category',
})


class ProgressSessionStore:
    """Thread-safe session table with change listeners"""

    def __init__(self, max_logs: int = MAX_SESSION_LOGS):
        self._sessions: Dict[str, MigrationSession] = {}
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self.max_logs = max_logs

    def create(self, session_type: SessionType = SessionType.FULL, session_id: Optional[str] = None) -> MigrationSession:
        session_id = session_id or str(uuid.uuid4())
        session = MigrationSession(session_id=session_id, type=SessionType(session_type))
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} already exists")
            self._sessions[session_id] = session
            snapshot = copy.deepcopy(session)
        logger.info(f"Created {session.type.value} migration session {session_id}")
        self._notify(snapshot)
        return snapshot

    def get(self, session_id: str) -> Optional[MigrationSession]:
        """Snapshot of the session, or None"""
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    def list(self) -> List[MigrationSession]:
        with self._lock:
            sessions = [copy.deepcopy(s) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.start_time)

    def update(self, session_id: str, **changes) -> bool:
        """Apply field changes; returns False when the session is unknown or terminal"""
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {sorted(unknown)}")

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                return False
            for key, value in changes.items():
                setattr(session, key, value)
            if 'progress' in changes:
                session.progress = max(0, min(100, int(session.progress)))
            snapshot = copy.deepcopy(session)
        self._notify(snapshot)
        return True

    def append_log(self, session_id: str, message: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                return False
            stamp = datetime.now(timezone.utc).strftime('%H:%M:%S')
            session.logs.append(f"[{stamp}] {message}")
            if len(session.logs) > self.max_logs:
                del session.logs[:len(session.logs) - self.max_logs]
            snapshot = copy.deepcopy(session)
        self._notify(snapshot)
        return True

    def complete(self, session_id: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self._finish(session_id, SessionStatus.COMPLETED, stage="Completed",
                            metadata=metadata, progress=100)

    def fail(self, session_id: str, error: str, category: Optional[str] = None,
             metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self._finish(session_id, SessionStatus.ERROR, stage="Failed",
                            metadata=metadata, error=error, category=category)

    def mark_cancelled(self, session_id: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self._finish(session_id, SessionStatus.CANCELLED, stage="Cancelled", metadata=metadata)

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; the orchestrator stops at the next table boundary"""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                return False
            session.cancel_requested = True
            session.current_job = "Cancellation requested"
            snapshot = copy.deepcopy(session)
        logger.info(f"Cancellation requested for session {session_id}")
        self._notify(snapshot)
        return True

    def is_cancelled(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return bool(session and (session.cancel_requested or session.status == SessionStatus.CANCELLED))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _finish(self, session_id: str, status: SessionStatus, stage: str,
                metadata: Optional[Dict[str, Any]] = None, error: Optional[str] = None,
                category: Optional[str] = None, progress: Optional[int] = None) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                return False
            session.status = status
            session.stage = stage
            session.end_time = _now_iso()
            if metadata is not None:
                session.migration_metadata = metadata
            if error is not None:
                session.error = error
                session.error_category = category
            if progress is not None:
                session.progress = progress
            snapshot = copy.deepcopy(session)
        logger.info(f"Session {session_id} finished with status {status.value}")
        self._notify(snapshot)
        return True

    def _notify(self, snapshot: MigrationSession):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Session listener failed: {e}")
