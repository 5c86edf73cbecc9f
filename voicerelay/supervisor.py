"""Per-connection supervisor.

One ConnectionSupervisor owns everything that belongs to a single Twilio
connection: the session state, the frame buffer, both relays, the agent
WebSocket and the connection-establishment timer. Nothing is shared between
supervisors.

It runs two loops:
1. telephony -> agent: Twilio messages through the InboundRelay
2. agent -> telephony: agent frames through the OutboundRelay

Teardown ordering:
- telephony close/error -> agent connection closed
- agent close/error     -> logged only; Twilio may still send a final ``stop``
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger
from websockets.exceptions import ConnectionClosed

from voicerelay.audio.frame_buffer import FrameBuffer
from voicerelay.audio.noise_gate import NoiseGate
from voicerelay.config import BridgeConfig
from voicerelay.functions import FunctionRegistry
from voicerelay.relay.inbound import InboundRelay
from voicerelay.relay.outbound import OutboundRelay
from voicerelay.serializers.agent import AgentSerializer
from voicerelay.session import SessionState
from voicerelay.transports.base import BaseTransport
from voicerelay.transports.websocket import WebSocketClientTransport


class ConnectTimer:
    """One-shot timer that runs ``on_expire`` unless cancelled first.

    ``cancel`` may be called any number of times; only the first call on a
    running timer has an effect.
    """

    def __init__(self, timeout: float, on_expire: Callable[[], Awaitable[None]]) -> None:
        self.timeout = timeout
        self._on_expire = on_expire
        self._handle: asyncio.TimerHandle | None = None
        self._expire_task: asyncio.Task | None = None
        self.expired = False

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._handle is not None or self.expired:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def cancel(self) -> bool:
        """Cancel the timer. Returns True only if it was still running."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        self.expired = True
        self._expire_task = asyncio.ensure_future(self._on_expire())

    async def shutdown(self) -> None:
        """Cancel the timer and wait for an expiry callback that is already running."""
        self.cancel()
        task, self._expire_task = self._expire_task, None
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Connect timeout handler failed: {e}")


class ConnectionSupervisor:
    """Bridges one accepted telephony connection to a new agent connection.

    Args:
        telephony: Accepted Twilio WebSocket.
        config: Bridge configuration.
        agent_settings: Settings payload sent as the first agent message.
        functions: Function dispatch table.
        session: Session state (a new one is created when omitted).
        agent: Agent transport (a WebSocket client for ``config.agent.url``
            when omitted).
    """

    def __init__(
        self,
        telephony: BaseTransport,
        config: BridgeConfig,
        agent_settings: dict[str, Any],
        functions: FunctionRegistry | None = None,
        session: SessionState | None = None,
        agent: BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.telephony = telephony
        self.session = session or SessionState()
        self.agent = agent or WebSocketClientTransport(
            url=config.agent.url,
            api_key=config.agent.api_key,
        )
        self.agent_settings = agent_settings
        self.agent_serializer = AgentSerializer()

        audio = config.audio
        self.buffer = FrameBuffer()
        noise_gate = (
            NoiseGate(audio.noise_threshold_ratio, audio.minimum_floor)
            if audio.noise_gate
            else None
        )
        self.inbound = InboundRelay(
            self.session,
            buffer=self.buffer,
            noise_gate=noise_gate,
            frame_size=audio.frame_size,
            min_chunk_size=audio.min_chunk_size,
            probe_bytes=audio.probe_bytes,
        )
        self.outbound = OutboundRelay(
            self.session,
            telephony=self.telephony,
            agent=self.agent,
            functions=functions,
            serializer=self.agent_serializer,
        )
        self.timer = ConnectTimer(config.agent.connect_timeout_seconds, self._on_connect_timeout)

        self._agent_task: asyncio.Task | None = None
        self._closed = False

    @property
    def agent_ready(self) -> bool:
        return self.inbound.agent_ready

    async def run(self) -> None:
        """Run until the telephony side disconnects, then tear down."""
        logger.info(f"Telephony client connected: session={self.session.session_id}")
        self.timer.start()
        self._agent_task = asyncio.create_task(self._agent_loop())
        try:
            await self._telephony_loop()
        finally:
            await self.close()

    async def _telephony_loop(self) -> None:
        while self.telephony.is_connected():
            try:
                raw = await self.telephony.recv()
            except ConnectionClosed as e:
                logger.info(f"Telephony client disconnected: {e}")
                return
            except Exception as e:
                logger.error(f"Telephony WebSocket error on session {self.session.session_id}: {e}")
                return

            # A bad message is dropped; the call keeps going
            try:
                await self.inbound.handle_message(raw)
            except Exception as e:
                logger.error(
                    f"Error handling telephony message on session {self.session.session_id}: {e}"
                )

    async def _agent_loop(self) -> None:
        try:
            await self.agent.connect()
        except Exception as e:
            logger.error(f"Agent connection error on session {self.session.session_id}: {e}")
            return

        logger.info(f"Agent connection established: session={self.session.session_id}")
        self.timer.cancel()

        try:
            logger.info("Sending agent settings")
            await self.agent.send(self.agent_serializer.encode_settings(self.agent_settings))
        except Exception as e:
            logger.error(f"Failed to send agent settings: {e}")
            return

        # Audio may flow only once the settings are on the wire
        self.inbound.agent = self.agent

        while self.agent.is_connected():
            try:
                raw = await self.agent.recv()
            except ConnectionClosed:
                logger.info(f"Agent connection closed: session={self.session.session_id}")
                return
            except Exception as e:
                logger.error(f"Agent connection error on session {self.session.session_id}: {e}")
                return

            try:
                await self.outbound.handle_message(raw)
            except Exception as e:
                logger.error(f"Error handling agent message on session {self.session.session_id}: {e}")

    async def _on_connect_timeout(self) -> None:
        logger.warning(
            f"Agent did not connect within {self.timer.timeout}s, "
            f"closing telephony connection (session={self.session.session_id})"
        )
        try:
            await self.telephony.disconnect()
        except Exception as e:
            logger.error(f"Error closing telephony connection: {e}")

    async def close(self) -> None:
        """Release everything this supervisor owns. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self.timer.shutdown()

        if self._agent_task and not self._agent_task.done():
            self._agent_task.cancel()
            try:
                await self._agent_task
            except asyncio.CancelledError:
                pass

        try:
            await self.agent.disconnect()
        except Exception as e:
            logger.warning(f"Error closing agent connection: {e}")

        self.inbound.agent = None
        self.buffer.reset()
        self.session.end()
        logger.info(
            f"Session closed: {self.session.session_id} "
            f"(duration: {self.session.duration_ms}ms, "
            f"frames sent: {self.inbound.frames_sent}, dropped: {self.inbound.frames_dropped})"
        )
