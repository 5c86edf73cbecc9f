"""Outbound calls and TwiML for Twilio Media Streams.

Twilio places the call, fetches TwiML from the callback URL, and the TwiML
tells it to open a Media Stream WebSocket back to the relay.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import Connect, VoiceResponse

from voicerelay.config import TwilioConfig


class CallConfigurationError(ValueError):
    """Raised when a call cannot be placed because numbers or credentials are missing."""


def build_stream_twiml(
    stream_url: str,
    greeting: str = "",
    voice: str = "alice",
    language: str = "es-ES",
) -> str:
    """Return TwiML that (optionally) greets the callee and starts a Media Stream."""
    response = VoiceResponse()
    if greeting:
        response.say(greeting, voice=voice, language=language)
    connect = Connect()
    connect.stream(url=stream_url)
    response.append(connect)
    return str(response)


class CallLauncher:
    """Places outbound calls through the Twilio REST API.

    Args:
        config: Twilio credentials and default numbers.
        client: Pre-built Twilio client (built lazily from ``config`` otherwise).
    """

    def __init__(self, config: TwilioConfig, client: Any = None) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.config.account_sid or not self.config.auth_token:
                raise CallConfigurationError(
                    "Twilio credentials are required. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN"
                )
            self._client = TwilioClient(self.config.account_sid, self.config.auth_token)
        return self._client

    def resolve_numbers(
        self, from_number: str | None = None, to_number: str | None = None
    ) -> tuple[str, str]:
        """Return ``(from, to)``, falling back to the configured numbers."""
        from_number = from_number or self.config.from_number
        to_number = to_number or self.config.to_number
        if not from_number or not to_number:
            raise CallConfigurationError(
                "Phone numbers are required. Either provide fromNumber and toNumber "
                "or set TWILIO_PHONE_NUMBER and CUSTOMER_PHONE_NUMBER"
            )
        return from_number, to_number

    def place_call(
        self,
        callback_url: str,
        to_number: str | None = None,
        from_number: str | None = None,
    ) -> str:
        """Start a call whose TwiML is fetched from ``callback_url``. Returns the call SID."""
        from_number, to_number = self.resolve_numbers(from_number, to_number)
        logger.info(f"Placing call from {from_number} to {to_number} (TwiML: {callback_url})")
        call = self.client.calls.create(url=callback_url, to=to_number, from_=from_number)
        logger.info(f"Outbound call initiated | Twilio SID: {call.sid}")
        return call.sid
