"""HTTP/WebSocket server for VoiceRelay.

Provides a FastAPI application that accepts Twilio Media Stream WebSocket
connections and bridges each one to the speech agent. It also exposes the
outbound-call trigger, the TwiML webhook Twilio fetches once the call is
answered, and health/status endpoints.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from loguru import logger
from twilio.base.exceptions import TwilioRestException
from websockets.exceptions import ConnectionClosed

from voicerelay import __version__
from voicerelay.bridge import AgentFactory, VoiceRelay
from voicerelay.calls import CallConfigurationError, CallLauncher, build_stream_twiml
from voicerelay.config import BridgeConfig, load_config
from voicerelay.functions import FunctionHandler, FunctionRegistry
from voicerelay.transports.base import BaseTransport


def create_app(
    config: BridgeConfig | dict | str | Path | None = None,
    functions: FunctionRegistry | Mapping[str, FunctionHandler] | None = None,
    agent_settings: dict[str, Any] | None = None,
    agent_factory: AgentFactory | None = None,
    launcher: CallLauncher | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Bridge configuration (YAML path, dict, or BridgeConfig).
        functions: Function dispatch table for agent function calls.
        agent_settings: Agent settings payload (read from
            ``agent.settings_path`` when omitted).
        agent_factory: Builds the agent transport for each call.
        launcher: Twilio call launcher (built from ``config.twilio`` when omitted).
    """
    bridge_config = load_config(config)
    relay = VoiceRelay(
        bridge_config,
        functions=functions,
        agent_settings=agent_settings,
        agent_factory=agent_factory,
    )
    launcher = launcher or CallLauncher(bridge_config.twilio)

    app = FastAPI(
        title="VoiceRelay",
        description="Twilio Media Streams to speech agent relay",
        version=__version__,
    )
    app.state.relay = relay
    app.state.launcher = launcher

    @app.get("/health")
    async def health():
        return JSONResponse({
            "status": "ok",
            "active_calls": relay.sessions.active_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.get("/status")
    async def status():
        sessions = []
        for s in relay.sessions.all_sessions:
            sessions.append({
                "session_id": s.session_id,
                "stream_sid": s.stream_sid,
                "call_sid": s.call_sid,
                "phase": s.phase.value,
                "message_count": s.message_count,
                "media_count": s.media_count,
                "audio_bytes_in": s.audio_bytes_in,
                "audio_bytes_out": s.audio_bytes_out,
                "duration_ms": s.duration_ms,
            })
        return JSONResponse({
            "agent_url": bridge_config.agent.url,
            "listen_path": bridge_config.telephony.listen_path,
            "functions": relay.functions.names,
            "active_calls": relay.sessions.active_count,
            "sessions": sessions,
        })

    async def start_call(request: Request):
        body = await _read_body(request)
        callback_url = body.get("websocketUrl")
        logger.info("Starting outbound call")

        try:
            from_number, to_number = launcher.resolve_numbers(
                body.get("fromNumber"), body.get("toNumber")
            )
        except CallConfigurationError as e:
            logger.error(str(e))
            return PlainTextResponse(f"Error: {e}", status_code=500)

        if not callback_url:
            return PlainTextResponse(
                "Error: websocketUrl parameter is required", status_code=400
            )

        try:
            call_sid = await asyncio.to_thread(
                launcher.place_call, callback_url, to_number, from_number
            )
        except CallConfigurationError as e:
            logger.error(str(e))
            return PlainTextResponse(f"Error: {e}", status_code=500)
        except TwilioRestException as e:
            logger.error(f"Error starting call: {e}")
            return PlainTextResponse("Error starting call.", status_code=502)

        return JSONResponse({"status": "initiated", "call_sid": call_sid})

    app.add_api_route("/calls", start_call, methods=["POST"])
    app.add_api_route("/iniciar-llamada", start_call, methods=["POST"], include_in_schema=False)

    @app.api_route("/twiml", methods=["GET", "POST"])
    async def twiml(request: Request):
        stream_url = (
            request.query_params.get("websocketUrl")
            or bridge_config.telephony.stream_url
        )
        if not stream_url:
            return PlainTextResponse(
                "Error: websocketUrl parameter is required", status_code=400
            )
        logger.info(f"Serving TwiML for stream {stream_url}")
        twilio = bridge_config.twilio
        xml = build_stream_twiml(
            stream_url,
            greeting=twilio.greeting,
            voice=twilio.voice,
            language=twilio.language,
        )
        return Response(content=xml, media_type="text/xml")

    @app.websocket(bridge_config.telephony.listen_path)
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"Telephony WebSocket connected: {websocket.client}")

        # Wrap the FastAPI WebSocket in our transport adapter
        transport = _FastAPIWebSocketAdapter(websocket)
        try:
            await relay.handle_telephony_connection(transport)
        except Exception as e:
            logger.error(f"WebSocket handler error: {e}")

    return app


async def _read_body(request: Request) -> dict[str, Any]:
    """Read a JSON or form-encoded request body into a dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    return {}


class _FastAPIWebSocketAdapter(BaseTransport):
    """Adapter to make FastAPI's WebSocket work with VoiceRelay's transport interface."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._connected = True

    async def connect(self, **kwargs) -> None:
        pass  # Already accepted by FastAPI

    async def send(self, data: bytes | str) -> None:
        if not self._connected:
            raise RuntimeError("Not connected")
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def recv(self) -> bytes | str:
        if not self._connected:
            raise ConnectionClosed(None, None)
        msg = await self._ws.receive()
        if msg["type"] == "websocket.disconnect":
            self._connected = False
            raise ConnectionClosed(None, None)
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise RuntimeError(f"Unexpected WebSocket message type: {msg['type']}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close()
        except RuntimeError as e:
            logger.debug(f"WebSocket already closed: {e}")

    def is_connected(self) -> bool:
        return self._connected


def run_server(
    config: BridgeConfig | dict | str | Path | None = None,
    functions: FunctionRegistry | Mapping[str, FunctionHandler] | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the VoiceRelay server with uvicorn.

    Args:
        config: Bridge configuration.
        functions: Function dispatch table for agent function calls.
        host: Override the listen host.
        port: Override the listen port.
    """
    bridge_config = load_config(config)
    app = create_app(bridge_config, functions=functions)

    uvicorn.run(
        app,
        host=host or bridge_config.telephony.listen_host,
        port=port or bridge_config.telephony.listen_port,
        log_level=bridge_config.logging.level.lower(),
    )
