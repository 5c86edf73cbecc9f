"""Speech-to-speech agent message serializer.

The agent WebSocket interleaves two kinds of frames: JSON control messages
carrying a ``type`` discriminator, and raw PCM audio. ``decode`` performs
an explicit tagged-union decode: a frame that parses as a JSON object is a
structured message, anything else is audio.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from voicerelay.core.events import (
    AgentAudio,
    AgentMessage,
    AgentMessageType,
    AnyAgentMessage,
    FunctionCall,
    FunctionCallRequest,
    FunctionCallResponse,
    InvalidFunctionCall,
    UserStartedSpeaking,
)


class AgentSerializer:
    """Decode agent frames and encode messages sent back to the agent."""

    name = "agent"

    def decode(self, raw: bytes | str) -> AnyAgentMessage:
        """Decode one agent frame.

        Returns:
            * :class:`UserStartedSpeaking` for barge-in,
            * :class:`FunctionCallRequest` for function calls,
            * :class:`AgentMessage` for any other structured type,
            * :class:`AgentAudio` when the frame is not a JSON object.

        Each entry of a ``FunctionCallRequest`` is validated on its own; an
        entry that does not validate becomes an :class:`InvalidFunctionCall`
        in the same position. A request whose ``functions`` is not a list is
        returned as an :class:`AgentMessage` with the original payload so the
        caller can still answer it.
        """
        msg = self._try_parse(raw)
        if msg is None:
            data = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
            return AgentAudio(data=data)

        msg_type = str(msg.get("type", ""))

        if msg_type == AgentMessageType.USER_STARTED_SPEAKING.value:
            return UserStartedSpeaking(payload=msg)

        if msg_type == AgentMessageType.FUNCTION_CALL_REQUEST.value:
            functions = msg.get("functions", [])
            if not isinstance(functions, list):
                return AgentMessage(type=msg_type, payload=msg)
            return FunctionCallRequest(functions=[self._decode_call(entry) for entry in functions])

        return AgentMessage(type=msg_type, payload=msg)

    def encode_response(self, response: FunctionCallResponse) -> str:
        return json.dumps(response.model_dump())

    def encode_settings(self, settings: dict[str, Any]) -> str:
        return json.dumps(settings)

    @staticmethod
    def _decode_call(entry: Any) -> FunctionCall | InvalidFunctionCall:
        try:
            return FunctionCall.model_validate(entry)
        except ValidationError as e:
            fields = entry if isinstance(entry, dict) else {}
            return InvalidFunctionCall(
                id=_recover(fields.get("id")),
                name=_recover(fields.get("name")),
                error=f"invalid function call entry ({e.error_count()} validation errors)",
            )

    @staticmethod
    def _try_parse(raw: bytes | str) -> dict[str, Any] | None:
        try:
            text = raw if isinstance(raw, str) else bytes(raw).decode("utf-8")
            msg = json.loads(text)
        except (UnicodeDecodeError, ValueError):
            return None
        return msg if isinstance(msg, dict) else None


def _recover(value: Any) -> str:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != "":
        return str(value)
    return "unknown"
