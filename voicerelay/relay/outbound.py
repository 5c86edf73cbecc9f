"""Agent -> telephony direction.

Agent frame -> AgentSerializer (tagged decode) ->
    UserStartedSpeaking -> Twilio ``clear``
    FunctionCallRequest -> FunctionRegistry -> FunctionCallResponse to agent
    AgentAudio          -> Twilio ``media``
"""

from __future__ import annotations

from loguru import logger

from voicerelay.core.events import (
    AgentAudio,
    AgentMessage,
    AgentMessageType,
    AnyAgentMessage,
    FunctionCallRequest,
    FunctionCallResponse,
    InvalidFunctionCall,
    UserStartedSpeaking,
)
from voicerelay.functions import FunctionRegistry, error_response
from voicerelay.serializers.agent import AgentSerializer
from voicerelay.serializers.twilio import TwilioSerializer
from voicerelay.session import SessionState
from voicerelay.transports.base import BaseTransport


class OutboundRelay:
    """Consumes agent messages for one session.

    Only reads ``session.stream_sid``; never touches the inbound buffer.
    """

    def __init__(
        self,
        session: SessionState,
        telephony: BaseTransport,
        agent: BaseTransport,
        functions: FunctionRegistry | None = None,
        serializer: AgentSerializer | None = None,
        twilio_serializer: TwilioSerializer | None = None,
    ) -> None:
        self.session = session
        self.telephony = telephony
        self.agent = agent
        self.functions = functions or FunctionRegistry()
        self.serializer = serializer or AgentSerializer()
        self.twilio_serializer = twilio_serializer or TwilioSerializer()

    async def handle_message(self, raw: bytes | str) -> None:
        """Process one agent frame."""
        await self.handle(self.serializer.decode(raw))

    async def handle(self, message: AnyAgentMessage) -> None:
        if isinstance(message, AgentAudio):
            await self._relay_audio(message)

        elif isinstance(message, UserStartedSpeaking):
            await self._handle_barge_in()

        elif isinstance(message, FunctionCallRequest):
            await self._handle_function_calls(message)

        elif isinstance(message, AgentMessage):
            if message.type == AgentMessageType.FUNCTION_CALL_REQUEST.value:
                # Request whose function list is not a list
                await self._send_response(error_response("malformed FunctionCallRequest"))
            else:
                logger.debug(f"Received from agent: {message.type}")

    async def _handle_barge_in(self) -> None:
        logger.info(f"User started speaking on session {self.session.session_id}")
        stream_sid = self.session.stream_sid
        if not stream_sid:
            logger.warning("Barge-in with no active stream, nothing to clear")
            return
        await self._send_telephony(self.twilio_serializer.build_clear_message(stream_sid))

    async def _handle_function_calls(self, request: FunctionCallRequest) -> None:
        try:
            for call in request.functions:
                if isinstance(call, InvalidFunctionCall):
                    logger.warning(f"Rejecting function call {call.id}: {call.error}")
                    response = error_response(call.error, call_id=call.id, name=call.name)
                else:
                    response = await self.functions.dispatch(call)
                await self._send_response(response)
        except Exception as e:
            logger.error(f"Error handling function call request: {e}")
            await self._send_response(error_response(e))

    async def _relay_audio(self, message: AgentAudio) -> None:
        stream_sid = self.session.stream_sid
        if not stream_sid:
            logger.warning(
                f"Dropping {len(message.data)} bytes of agent audio, no active stream "
                f"on session {self.session.session_id}"
            )
            return
        self.session.audio_bytes_out += len(message.data)
        await self._send_telephony(
            self.twilio_serializer.build_media_message(stream_sid, message.data)
        )

    async def _send_telephony(self, wire_msg: str) -> None:
        try:
            await self.telephony.send(wire_msg)
        except Exception as e:
            logger.error(f"Error sending to telephony peer: {e}")

    async def _send_response(self, response: FunctionCallResponse) -> None:
        try:
            await self.agent.send(self.serializer.encode_response(response))
            logger.info(f"Sent function result: {response.name} (ID: {response.id})")
        except Exception as e:
            logger.error(f"Error sending function result {response.id} to agent: {e}")
