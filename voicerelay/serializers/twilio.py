"""Twilio Media Streams WebSocket serializer.

Translates between Twilio's Media Streams protocol and VoiceRelay's
telephony events. Twilio sends JSON text messages with an ``event`` field;
audio payloads are base64 encoded.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import ValidationError

from voicerelay.core.events import (
    AnyTelephonyEvent,
    DTMFReceived,
    MarkReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
    TelephonyEventType,
    UnknownTelephonyEvent,
)


class TwilioMessageError(ValueError):
    """Raised when a Twilio message cannot be parsed."""


class TwilioSerializer:
    """Serializer for the Twilio Media Streams protocol.

    Serializers do no I/O. Stream identity is tracked by the session, so
    outbound builders take the ``stream_sid`` explicitly.
    """

    name = "twilio"

    # ------------------------------------------------------------------
    # Deserialization (Twilio -> events)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> AnyTelephonyEvent:
        """Parse one Twilio message into a telephony event.

        Message types handled:
            * ``connected`` -- :class:`StreamConnected`
            * ``start``     -- :class:`StreamStarted`
            * ``media``     -- :class:`MediaReceived` (payload decoded)
            * ``mark``      -- :class:`MarkReceived`
            * ``dtmf``      -- :class:`DTMFReceived`
            * ``stop``      -- :class:`StreamStopped`

        Anything else becomes an :class:`UnknownTelephonyEvent`.

        Raises:
            TwilioMessageError: invalid JSON, a non-object message, a
                section of the wrong shape, or an undecodable media payload.
        """
        msg = self._parse_message(raw)
        try:
            return self._to_event(msg)
        except ValidationError as e:
            raise TwilioMessageError(f"Invalid {msg.get('event')!r} message: {e}") from e

    def _to_event(self, msg: dict[str, Any]) -> AnyTelephonyEvent:
        event_type = msg.get("event", "")
        stream_sid = str(msg.get("streamSid") or "")

        if event_type == TelephonyEventType.CONNECTED.value:
            return StreamConnected(
                protocol=str(msg.get("protocol", "")),
                version=str(msg.get("version", "")),
            )

        if event_type == TelephonyEventType.START.value:
            return self._handle_start(msg)

        if event_type == TelephonyEventType.MEDIA.value:
            return self._handle_media(msg, stream_sid)

        if event_type == TelephonyEventType.MARK.value:
            mark_data = self._section(msg, "mark")
            return MarkReceived(stream_sid=stream_sid, name=str(mark_data.get("name") or ""))

        if event_type == TelephonyEventType.DTMF.value:
            dtmf_data = self._section(msg, "dtmf")
            return DTMFReceived(stream_sid=stream_sid, digit=str(dtmf_data.get("digit") or ""))

        if event_type == TelephonyEventType.STOP.value:
            return StreamStopped(stream_sid=stream_sid)

        return UnknownTelephonyEvent(stream_sid=stream_sid, name=str(event_type), payload=msg)

    # ------------------------------------------------------------------
    # Serialization (outbound control + audio)
    # ------------------------------------------------------------------

    def build_media_message(self, stream_sid: str, audio: bytes) -> str:
        """Wrap agent audio into a Twilio ``media`` message."""
        payload_b64 = base64.b64encode(audio).decode("ascii")
        return json.dumps(
            {
                "event": "media",
                "streamSid": stream_sid,
                "media": {
                    "payload": payload_b64,
                },
            }
        )

    def build_clear_message(self, stream_sid: str) -> str:
        """Build a Twilio ``clear`` control message.

        Instructs Twilio to discard any buffered audio that has not yet been
        played to the caller. Used for barge-in.
        """
        return json.dumps(
            {
                "event": "clear",
                "streamSid": stream_sid,
            }
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise the raw WebSocket frame into a dict."""
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TwilioMessageError(f"Invalid Twilio message: {e}") from e
        if not isinstance(msg, dict):
            raise TwilioMessageError(f"Expected a JSON object, got {type(msg).__name__}")
        return msg

    @staticmethod
    def _section(msg: dict, key: str) -> dict[str, Any]:
        """Return ``msg[key]`` as a dict (empty when absent)."""
        data = msg.get(key)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise TwilioMessageError(f"Expected '{key}' to be an object, got {type(data).__name__}")
        return data

    def _handle_start(self, msg: dict) -> StreamStarted:
        start_data = self._section(msg, "start")
        tracks = start_data.get("tracks") or []
        if not isinstance(tracks, list):
            raise TwilioMessageError(f"Expected 'tracks' to be a list, got {type(tracks).__name__}")
        return StreamStarted(
            stream_sid=str(start_data.get("streamSid") or ""),
            call_sid=str(start_data.get("callSid") or ""),
            account_sid=str(start_data.get("accountSid") or ""),
            tracks=[str(t) for t in tracks],
            custom_parameters=start_data.get("customParameters") or {},
            media_format=start_data.get("mediaFormat") or {},
        )

    def _handle_media(self, msg: dict, stream_sid: str) -> MediaReceived:
        media_data = self._section(msg, "media")
        payload = media_data.get("payload")
        if payload is None:
            payload = ""
        if not isinstance(payload, str):
            raise TwilioMessageError(f"Expected media payload to be a string, got {type(payload).__name__}")
        try:
            audio_bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TwilioMessageError(f"Invalid media payload: {e}") from e

        return MediaReceived(
            stream_sid=stream_sid,
            track=str(media_data.get("track") or ""),
            chunk=str(media_data.get("chunk", "")),
            data=audio_bytes,
        )
