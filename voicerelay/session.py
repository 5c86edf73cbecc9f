"""Per-call session state for VoiceRelay.

Each accepted telephony connection gets its own SessionState, which tracks
the Twilio stream identity and lifecycle phase. The SessionStore keeps the
live sessions of one process for status reporting.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from voicerelay.core.events import (
    AnyTelephonyEvent,
    MarkReceived,
    DTMFReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
)


class StreamPhase(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    STREAMING = "streaming"
    STOPPED = "stopped"


@dataclass
class SessionState:
    """Stream identity and lifecycle phase for one telephony connection.

    Transitions are driven by :meth:`apply`:

        connected -> CONNECTED
        start     -> STREAMING (only when the event carries a streamSid)
        media     -> no change
        stop      -> STOPPED, stream_sid cleared, counters reset

    Twilio may restart a stream on the same WebSocket, so a ``start`` is
    accepted from any phase.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: StreamPhase = StreamPhase.IDLE
    stream_sid: str | None = None
    call_sid: str = ""
    message_count: int = 0
    media_count: int = 0
    audio_bytes_in: int = 0
    audio_bytes_out: int = 0
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    @property
    def is_streaming(self) -> bool:
        return self.phase is StreamPhase.STREAMING

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def apply(self, event: AnyTelephonyEvent) -> bool:
        """Apply a telephony event. Returns False if the event was not recognised."""
        if isinstance(event, StreamConnected):
            self.phase = StreamPhase.CONNECTED

        elif isinstance(event, StreamStarted):
            if event.stream_sid:
                self.stream_sid = event.stream_sid
                self.call_sid = event.call_sid
                self.phase = StreamPhase.STREAMING
                logger.info(
                    f"Stream started: {self.stream_sid} "
                    f"(session={self.session_id}, call={self.call_sid})"
                )
            else:
                logger.warning(
                    f"Start event without streamSid on session {self.session_id}, "
                    f"staying in phase {self.phase.value}"
                )

        elif isinstance(event, MediaReceived):
            self.media_count += 1

        elif isinstance(event, StreamStopped):
            logger.info(f"Stream stopped: {self.stream_sid} (session={self.session_id})")
            self.reset()
            self.phase = StreamPhase.STOPPED

        elif isinstance(event, (MarkReceived, DTMFReceived)):
            pass

        else:
            logger.info(f"Ignoring unknown telephony event on session {self.session_id}")
            return False

        self.message_count += 1
        return True

    def reset(self) -> None:
        """Clear the stream identity and counters."""
        self.stream_sid = None
        self.call_sid = ""
        self.message_count = 0
        self.media_count = 0

    def end(self) -> None:
        if self.ended_at is None:
            self.ended_at = time.time()

    @property
    def duration_ms(self) -> int:
        """Session duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)


class SessionStore:
    """Registry of live sessions, keyed by session_id."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def create(self, **kwargs) -> SessionState:
        """Create and store a new session."""
        session = SessionState(**kwargs)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def get_by_stream_sid(self, stream_sid: str) -> SessionState | None:
        for session in self._sessions.values():
            if session.stream_sid == stream_sid:
                return session
        return None

    def remove(self, session_id: str) -> None:
        """Remove a session from the store."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.end()
            logger.info(
                f"Session removed: {session.session_id} "
                f"(duration: {session.duration_ms}ms)"
            )

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_active)

    @property
    def all_sessions(self) -> list[SessionState]:
        return list(self._sessions.values())
