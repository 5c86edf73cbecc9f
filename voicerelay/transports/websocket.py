"""WebSocket transports for VoiceRelay.

Provides the client transport used for the speech-agent connection and a
standalone server that accepts Twilio Media Stream connections, both built
on the ``websockets`` asyncio API.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import websockets.asyncio.client
import websockets.asyncio.server
from loguru import logger
from websockets.protocol import State

from voicerelay.transports.base import BaseTransport


class WebSocketClientTransport(BaseTransport):
    """WebSocket client transport for connecting to a remote endpoint.

    Used for the agent-side connection: VoiceRelay connects as a client to
    the speech agent's WebSocket endpoint.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str = "",
        **ws_kwargs: Any,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._ws: Any | None = None
        self._ws_kwargs = ws_kwargs

    @property
    def url(self) -> str | None:
        return self._url

    async def connect(self, **kwargs) -> None:
        url = kwargs.get("url", self._url)
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url

        ws_kwargs = dict(self._ws_kwargs)
        if self._api_key:
            ws_kwargs.setdefault(
                "additional_headers", {"Authorization": f"Token {self._api_key}"}
            )

        logger.info(f"Connecting to WebSocket: {url}")
        self._ws = await websockets.asyncio.client.connect(url, **ws_kwargs)
        logger.info(f"Connected to {url}")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        await self._ws.send(data)

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise RuntimeError("Not connected")
        return await self._ws.recv()

    async def disconnect(self) -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info(f"WebSocket client disconnected: {self._url}")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN


class WebSocketServerTransport(BaseTransport):
    """Wraps an already-accepted server-side connection.

    Used for the telephony side: Twilio connects to VoiceRelay's server,
    and this transport wraps that accepted WebSocket.
    """

    def __init__(self, websocket: Any = None) -> None:
        self._ws = websocket

    async def connect(self, **kwargs) -> None:
        ws = kwargs.get("websocket")
        if ws:
            self._ws = ws
        if not self._ws:
            raise ValueError("An accepted WebSocket connection is required")
        logger.info("Telephony WebSocket connection accepted")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        await self._ws.send(data)

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise RuntimeError("Not connected")
        return await self._ws.recv()

    async def disconnect(self) -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("Telephony WebSocket disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN


ConnectionHandler = Callable[[BaseTransport], Awaitable[None]]


class WebSocketServer:
    """Standalone WebSocket server that accepts telephony connections.

    Each new connection on ``path`` is wrapped in a
    :class:`WebSocketServerTransport` and handed to ``handler``.

    Usage:
        async def on_connection(transport):
            ...

        server = WebSocketServer(host="0.0.0.0", port=8881, handler=on_connection)
        await server.serve_forever()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8881,
        path: str = "/",
        handler: ConnectionHandler | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self._handler = handler
        self._server: Any = None

    async def _ws_handler(self, websocket) -> None:
        """Internal handler for each accepted WebSocket connection."""
        if self.path and self.path != "/":
            request = getattr(websocket, "request", None)
            request_path = (request.path if request else "/") or "/"
            if not request_path.startswith(self.path):
                logger.warning(f"Rejected connection to {request_path} (expected {self.path})")
                await websocket.close(code=1008, reason="Unknown path")
                return

        transport = WebSocketServerTransport(websocket=websocket)
        if self._handler:
            try:
                await self._handler(transport)
            except Exception as e:
                logger.error(f"Handler error: {e}")
        else:
            logger.warning("No handler registered for incoming connections")

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await websockets.asyncio.server.serve(
            self._ws_handler,
            self.host,
            self.port,
        )
        logger.info(f"WebSocket server listening on ws://{self.host}:{self.port}{self.path}")

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("WebSocket server stopped")

    async def serve_forever(self) -> None:
        """Start and run the server until cancelled."""
        await self.start()
        try:
            await asyncio.Future()
        except asyncio.CancelledError:
            await self.stop()
