"""Base transport interface for VoiceRelay.

Transports handle the raw connection lifecycle of one WebSocket peer:
connecting, sending, receiving, and disconnecting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseTransport(ABC):
    """Abstract base class for transport connections.

    Used for both peers of a session: the telephony provider (server side)
    and the speech agent (client side).
    """

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish the transport connection."""
        ...

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send one text or binary message."""
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next message.

        Raises:
            websockets.exceptions.ConnectionClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport connection gracefully."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """True while the connection is open."""
        ...
