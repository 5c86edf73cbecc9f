"""Per-session relays between the telephony peer and the speech agent.

Usage:
    from voicerelay.relay import InboundRelay, OutboundRelay

    inbound = InboundRelay(session, noise_gate=NoiseGate())
    await inbound.handle_message(raw_twilio_message)
"""

from voicerelay.relay.inbound import DEFAULT_FRAME_SIZE, InboundRelay
from voicerelay.relay.outbound import OutboundRelay

__all__ = [
    "DEFAULT_FRAME_SIZE",
    "InboundRelay",
    "OutboundRelay",
]
