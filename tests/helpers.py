"""In-memory transports and Twilio message builders shared by the tests."""

import asyncio
import base64
import json
import struct

from websockets.exceptions import ConnectionClosed

from voicerelay.transports.base import BaseTransport

_CLOSE = object()


class FakeTransport(BaseTransport):
    """Queue-backed transport.

    ``feed`` queues a message for ``recv``; ``close_remote`` simulates the
    peer hanging up. ``send_gate`` (an asyncio.Event) makes ``send`` block
    until it is set. ``connect_forever`` makes ``connect`` never return.
    """

    def __init__(self, connected=False, connect_error=None, connect_forever=False, send_gate=None):
        self.sent = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._queue = asyncio.Queue()
        self._connected = connected
        self._connect_error = connect_error
        self._connect_forever = connect_forever
        self._send_gate = send_gate

    async def connect(self, **kwargs):
        self.connect_calls += 1
        if self._connect_forever:
            await asyncio.Event().wait()
        if self._connect_error:
            raise self._connect_error
        self._connected = True

    async def send(self, data):
        if self._send_gate is not None:
            await self._send_gate.wait()
        if not self._connected:
            raise RuntimeError("Not connected")
        self.sent.append(data)

    async def recv(self):
        if not self._connected:
            raise ConnectionClosed(None, None)
        item = await self._queue.get()
        if item is _CLOSE:
            self._connected = False
            raise ConnectionClosed(None, None)
        return item

    async def disconnect(self):
        self.disconnect_calls += 1
        self._connected = False
        self._queue.put_nowait(_CLOSE)

    def is_connected(self):
        return self._connected

    def feed(self, message):
        self._queue.put_nowait(message)

    def close_remote(self):
        self._queue.put_nowait(_CLOSE)

    @property
    def sent_json(self):
        return [json.loads(m) for m in self.sent if isinstance(m, str)]


async def wait_until(predicate, timeout=1.0):
    """Yield to the loop until ``predicate()`` is true."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


def pcm(value, n_samples):
    """PCM16 LE frame of ``n_samples`` samples all equal to ``value``."""
    return struct.pack(f"<{n_samples}h", *([value] * n_samples))


def start_message(stream_sid="MZ123", call_sid="CA123"):
    return json.dumps({
        "event": "start",
        "sequenceNumber": "1",
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "accountSid": "AC123",
            "tracks": ["inbound"],
            "customParameters": {},
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
        "streamSid": stream_sid,
    })


def media_message(audio, track="inbound", stream_sid="MZ123", chunk=1):
    return json.dumps({
        "event": "media",
        "sequenceNumber": str(chunk + 1),
        "media": {
            "track": track,
            "chunk": str(chunk),
            "timestamp": "5",
            "payload": base64.b64encode(audio).decode("ascii"),
        },
        "streamSid": stream_sid,
    })


def stop_message(stream_sid="MZ123"):
    return json.dumps({
        "event": "stop",
        "sequenceNumber": "99",
        "stop": {"accountSid": "AC123", "callSid": "CA123"},
        "streamSid": stream_sid,
    })
