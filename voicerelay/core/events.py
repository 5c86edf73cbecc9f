"""Wire event model for VoiceRelay.

Two tagged unions live here:

- Telephony events, decoded from Twilio Media Streams JSON messages.
- Agent messages, decoded from the speech-to-speech agent WebSocket.

Serializers turn raw frames into these models; relays only ever branch on
the model type, never on the shape of a raw message.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class TelephonyEventType(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    MARK = "mark"
    DTMF = "dtmf"
    UNKNOWN = "unknown"


class Track(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TelephonyEvent(BaseModel):
    """Base class for all events received from the telephony peer."""

    event_type: TelephonyEventType
    stream_sid: str = ""
    timestamp: float = Field(default_factory=time.time)


class StreamConnected(TelephonyEvent):
    """Twilio's initial ``connected`` handshake."""

    event_type: TelephonyEventType = TelephonyEventType.CONNECTED
    protocol: str = ""
    version: str = ""


class StreamStarted(TelephonyEvent):
    """Stream metadata. ``stream_sid`` is empty when Twilio omitted it."""

    event_type: TelephonyEventType = TelephonyEventType.START
    call_sid: str = ""
    account_sid: str = ""
    tracks: list[str] = Field(default_factory=list)
    custom_parameters: dict[str, Any] = Field(default_factory=dict)
    media_format: dict[str, Any] = Field(default_factory=dict)


class MediaReceived(TelephonyEvent):
    """One audio fragment, already base64-decoded."""

    event_type: TelephonyEventType = TelephonyEventType.MEDIA
    track: str = Track.INBOUND.value
    chunk: str = ""
    data: bytes = b""

    @property
    def is_inbound(self) -> bool:
        return self.track == Track.INBOUND.value


class StreamStopped(TelephonyEvent):
    event_type: TelephonyEventType = TelephonyEventType.STOP


class MarkReceived(TelephonyEvent):
    """Playback reached a named mark."""

    event_type: TelephonyEventType = TelephonyEventType.MARK
    name: str = ""


class DTMFReceived(TelephonyEvent):
    event_type: TelephonyEventType = TelephonyEventType.DTMF
    digit: str = ""


class UnknownTelephonyEvent(TelephonyEvent):
    """Any ``event`` value we do not recognise."""

    event_type: TelephonyEventType = TelephonyEventType.UNKNOWN
    name: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


AnyTelephonyEvent = (
    StreamConnected
    | StreamStarted
    | MediaReceived
    | StreamStopped
    | MarkReceived
    | DTMFReceived
    | UnknownTelephonyEvent
)


# ---------------------------------------------------------------------------
# Speech-to-speech agent messages
# ---------------------------------------------------------------------------


class AgentMessageType(str, Enum):
    USER_STARTED_SPEAKING = "UserStartedSpeaking"
    FUNCTION_CALL_REQUEST = "FunctionCallRequest"
    FUNCTION_CALL_RESPONSE = "FunctionCallResponse"


class AgentAudio(BaseModel):
    """Raw audio emitted by the agent (anything that is not a JSON object)."""

    kind: Literal["audio"] = "audio"
    data: bytes = b""


class UserStartedSpeaking(BaseModel):
    """Barge-in: the caller started talking over agent playback."""

    kind: Literal["barge_in"] = "barge_in"
    payload: dict[str, Any] = Field(default_factory=dict)


class FunctionCall(BaseModel):
    name: str
    id: str
    arguments: str = "{}"


class InvalidFunctionCall(BaseModel):
    """Entry of a function call request that failed validation.

    ``id`` and ``name`` are whatever could be recovered from the raw entry.
    """

    name: str = "unknown"
    id: str = "unknown"
    error: str = ""


class FunctionCallRequest(BaseModel):
    kind: Literal["function_call_request"] = "function_call_request"
    functions: list[FunctionCall | InvalidFunctionCall] = Field(default_factory=list)


class AgentMessage(BaseModel):
    """Structured agent message of a type the relay does not act on."""

    kind: Literal["control"] = "control"
    type: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class FunctionCallResponse(BaseModel):
    """Result of one function call, sent back to the agent.

    ``content`` is the JSON-encoded result (or ``{"error": ...}`` object).
    """

    type: str = AgentMessageType.FUNCTION_CALL_RESPONSE.value
    id: str
    name: str
    content: str


AnyAgentMessage = AgentAudio | UserStartedSpeaking | FunctionCallRequest | AgentMessage


# Map Twilio ``event`` names to their classes
TELEPHONY_EVENT_MAP: dict[str, type[TelephonyEvent]] = {
    TelephonyEventType.CONNECTED.value: StreamConnected,
    TelephonyEventType.START.value: StreamStarted,
    TelephonyEventType.MEDIA.value: MediaReceived,
    TelephonyEventType.STOP.value: StreamStopped,
    TelephonyEventType.MARK.value: MarkReceived,
    TelephonyEventType.DTMF.value: DTMFReceived,
}
