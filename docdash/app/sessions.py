"""
In-memory session store keyed by an opaque per-upload id.

Rationale:
- Not durable: a restart forgets every session.
- The lock only guards dict operations, never I/O or model calls, so one
  upload's pipeline never waits on another's.
- Entries older than the TTL are invisible to get() and removed by sweep(),
  which the app schedules hourly.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .schemas import DashboardConfig, ExtractionResult, PipelineState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class StageFailure:
    stage: str
    reason: str


@dataclass
class Session:
    """One uploaded document and everything the pipeline learned about it."""

    session_id: str
    file_name: str
    file_type: str
    extracted_text: str = ""
    content_length: int = 0
    upload_time: float = field(default_factory=time.time)
    state: PipelineState = PipelineState.UPLOADED
    has_data: bool = False
    extraction: Optional[ExtractionResult] = None
    dashboard_config: Optional[DashboardConfig] = None
    reason: Optional[str] = None
    failure: Optional[StageFailure] = None

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "extractedText": self.extracted_text,
            "contentLength": self.content_length,
            "uploadTime": self.upload_time,
            "state": self.state.value,
            "hasData": self.has_data,
            "data": self.extraction.data if self.extraction else None,
            "schema": self.extraction.data_schema.model_dump(by_alias=True) if self.extraction else None,
            "metadata": self.extraction.metadata.model_dump(by_alias=True) if self.extraction else None,
            "dashboardConfig": self.dashboard_config.model_dump(by_alias=True) if self.dashboard_config else None,
            "reason": self.reason,
            "failure": {"stage": self.failure.stage, "reason": self.failure.reason} if self.failure else None,
        }


class SessionStore:
    """Thread-safe map of session id -> Session with time-based expiry."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def _expired(self, session: Session, now: float) -> bool:
        return now - session.upload_time > self.ttl_seconds

    def create(self, file_name: str, file_type: str, **fields) -> Session:
        session = Session(session_id=new_session_id(), file_name=file_name, file_type=file_type, **fields)
        self.set(session)
        return session

    def set(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or self._expired(session, time.time()):
            return None
        return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list(self) -> List[Session]:
        now = time.time()
        with self._lock:
            sessions = list(self._sessions.values())
        return [s for s in sessions if not self._expired(s, now)]

    def clear(self) -> int:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        return count

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired sessions and return the count removed."""
        now = time.time() if now is None else now
        with self._lock:
            expired = [k for k, v in self._sessions.items() if self._expired(v, now)]
            for k in expired:
                del self._sessions[k]
        for k in expired:
            logger.info(f"Cleaned up expired session: {k}")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


async def sweep_periodically(store: SessionStore, interval_seconds: float) -> None:
    """Run store.sweep() every interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = store.sweep()
        if removed:
            logger.info(f"Session sweep removed {removed} expired session(s)")
