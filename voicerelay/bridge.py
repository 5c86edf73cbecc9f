"""VoiceRelay - central bridge.

The VoiceRelay class holds the process-wide pieces (configuration, agent
settings, function dispatch table, session store) and creates one
ConnectionSupervisor per accepted Twilio connection. All per-call state
lives in the supervisor.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Mapping

from loguru import logger

from voicerelay.config import BridgeConfig, load_agent_settings, load_config
from voicerelay.functions import FunctionHandler, FunctionRegistry
from voicerelay.session import SessionState, SessionStore
from voicerelay.supervisor import ConnectionSupervisor
from voicerelay.transports.base import BaseTransport
from voicerelay.transports.websocket import WebSocketClientTransport, WebSocketServer

AgentFactory = Callable[[], BaseTransport]


class VoiceRelay:
    """Twilio Media Streams <-> speech-to-speech agent bridge.

    Usage (config-driven):
        relay = VoiceRelay("bridge.yaml")
        relay.run()

    Usage (programmatic):
        relay = VoiceRelay(
            {"listen_port": 8881, "agent": {"settings": {...}}},
            functions={"get_weather": get_weather},
        )
        relay.run()
    """

    def __init__(
        self,
        config: BridgeConfig | dict | str | Path | None = None,
        functions: FunctionRegistry | Mapping[str, FunctionHandler] | None = None,
        agent_settings: dict[str, Any] | None = None,
        agent_factory: AgentFactory | None = None,
    ) -> None:
        self.config = load_config(config)
        self.agent_settings = (
            agent_settings if agent_settings is not None
            else load_agent_settings(self.config.agent)
        )

        if isinstance(functions, FunctionRegistry):
            self.functions = functions
        elif functions is not None:
            self.functions = FunctionRegistry(functions)
        elif self.config.functions:
            self.functions = FunctionRegistry.from_import_path(self.config.functions)
        else:
            self.functions = FunctionRegistry()

        self._agent_factory = agent_factory or self._default_agent
        self.sessions = SessionStore()
        self._server: WebSocketServer | None = None

    def _default_agent(self) -> BaseTransport:
        return WebSocketClientTransport(
            url=self.config.agent.url,
            api_key=self.config.agent.api_key,
        )

    # ------------------------------------------------------------------
    # Main run loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start the bridge (blocking). Runs the asyncio event loop."""
        logger.info(f"VoiceRelay starting: agent={self.config.agent.url}")
        try:
            asyncio.run(self.run_async())
        except KeyboardInterrupt:
            logger.info("VoiceRelay stopped by user")

    async def run_async(self) -> None:
        """Serve Twilio connections with the plain WebSocket server."""
        telephony = self.config.telephony
        self._server = WebSocketServer(
            host=telephony.listen_host,
            port=telephony.listen_port,
            path=telephony.listen_path,
            handler=self.handle_telephony_connection,
        )
        await self._server.serve_forever()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def create_supervisor(
        self, telephony: BaseTransport, session: SessionState | None = None
    ) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            telephony,
            config=self.config,
            agent_settings=self.agent_settings,
            functions=self.functions,
            session=session,
            agent=self._agent_factory(),
        )

    async def handle_telephony_connection(self, telephony: BaseTransport) -> None:
        """Bridge one accepted Twilio connection until it closes."""
        session = self.sessions.create()
        supervisor = self.create_supervisor(telephony, session)
        try:
            await supervisor.run()
        except Exception as e:
            logger.error(f"Bridge error for session {session.session_id}: {e}")
        finally:
            self.sessions.remove(session.session_id)
