"""Telephony -> agent direction.

Twilio text message -> TwilioSerializer -> SessionState
    -> pre-filter -> FrameBuffer -> NoiseGate -> agent WebSocket
"""

from __future__ import annotations

from loguru import logger

from voicerelay.audio.frame_buffer import FrameBuffer
from voicerelay.audio.noise_gate import (
    DEFAULT_MIN_CHUNK_SIZE,
    DEFAULT_PROBE_BYTES,
    NoiseGate,
    is_valid_chunk,
)
from voicerelay.core.events import AnyTelephonyEvent, MediaReceived, StreamStopped
from voicerelay.serializers.twilio import TwilioMessageError, TwilioSerializer
from voicerelay.session import SessionState
from voicerelay.transports.base import BaseTransport

DEFAULT_FRAME_SIZE = 20 * 160


class InboundRelay:
    """Consumes Twilio messages for one session and feeds the agent.

    Audio is only forwarded once ``agent`` has been set (the supervisor does
    this after the agent handshake) and while that connection is open.
    Frames produced while the agent is not ready are dropped, not queued.

    Args:
        session: Session state of this connection.
        buffer: Frame buffer owned by this relay.
        noise_gate: Gate applied to each frame, or None to forward frames as-is.
        frame_size: Bytes per frame sent to the agent.
        min_chunk_size: Pre-filter minimum fragment length.
        probe_bytes: Pre-filter all-zero probe length.
    """

    def __init__(
        self,
        session: SessionState,
        buffer: FrameBuffer | None = None,
        noise_gate: NoiseGate | None = None,
        serializer: TwilioSerializer | None = None,
        frame_size: int = DEFAULT_FRAME_SIZE,
        min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
        probe_bytes: int = DEFAULT_PROBE_BYTES,
    ) -> None:
        self.session = session
        self.buffer = buffer if buffer is not None else FrameBuffer()
        self.noise_gate = noise_gate
        self.serializer = serializer or TwilioSerializer()
        self.frame_size = frame_size
        self.min_chunk_size = min_chunk_size
        self.probe_bytes = probe_bytes
        self.agent: BaseTransport | None = None

        self._processing_media = False
        self._has_seen_media = False
        self.frames_sent = 0
        self.frames_dropped = 0

    @property
    def agent_ready(self) -> bool:
        return self.agent is not None and self.agent.is_connected()

    async def handle_message(self, raw: bytes | str) -> None:
        """Process one Twilio message in arrival order."""
        try:
            event = self.serializer.deserialize(raw)
        except TwilioMessageError as e:
            logger.warning(f"Ignoring malformed Twilio message on session {self.session.session_id}: {e}")
            return

        await self.handle_event(event)

    async def handle_event(self, event: AnyTelephonyEvent) -> None:
        if not self.session.apply(event):
            return

        if isinstance(event, MediaReceived):
            await self._handle_media(event)

        elif isinstance(event, StreamStopped):
            self.buffer.reset()
            self._has_seen_media = False

    async def _handle_media(self, event: MediaReceived) -> None:
        if not self._has_seen_media:
            logger.info(
                f"First media event on session {self.session.session_id} "
                f"(track={event.track}, {len(event.data)} bytes), suppressing further media logs"
            )
            self._has_seen_media = True

        if not self.session.is_streaming:
            logger.debug(f"Media before stream start, ignoring ({self.session.phase.value})")
            return

        if not event.is_inbound:
            return

        if self._processing_media:
            logger.error(
                f"Re-entrant media event on session {self.session.session_id}, dropping it"
            )
            return

        self._processing_media = True
        try:
            await self._process_audio(event.data)
        except Exception as e:
            logger.error(f"Error processing audio chunk: {e}")
        finally:
            self._processing_media = False

    async def _process_audio(self, chunk: bytes) -> None:
        if not is_valid_chunk(chunk, self.min_chunk_size, self.probe_bytes):
            logger.debug(f"Skipped silent or undersized audio chunk: {len(chunk)} bytes")
            return

        self.session.audio_bytes_in += len(chunk)
        self.buffer.append(chunk)

        for frame in self.buffer.drain(self.frame_size):
            processed = self.noise_gate.process(frame) if self.noise_gate else frame
            if not processed:
                logger.debug("Skipped silent audio frame")
                continue
            await self._forward(processed)

    async def _forward(self, frame: bytes) -> None:
        if not self.agent_ready:
            self.frames_dropped += 1
            logger.debug("Skipping audio frame, agent not ready")
            return
        try:
            await self.agent.send(frame)
            self.frames_sent += 1
            logger.debug(f"Sent audio frame to agent: {len(frame)} bytes")
        except Exception as e:
            self.frames_dropped += 1
            logger.error(f"Error sending audio to agent: {e}")
