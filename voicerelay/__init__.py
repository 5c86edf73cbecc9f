"""VoiceRelay - Twilio Media Streams to speech-to-speech agent relay.

Bridges Twilio's bidirectional Media Stream WebSocket to a hosted
speech-to-speech agent WebSocket: inbound audio is re-framed and noise
gated, agent audio and barge-in events are translated back into Twilio
messages, and agent function calls are dispatched to deployment handlers.

Quick start (config-driven):
    $ pip install voicerelay
    $ voicerelay init          # generates bridge.yaml
    $ voicerelay run --config bridge.yaml

Quick start (programmatic):
    from voicerelay import VoiceRelay

    relay = VoiceRelay(
        {"listen_port": 8881, "agent_settings": "config.json"},
        functions={"get_weather": get_weather},
    )
    relay.run()
"""

__version__ = "0.1.0"

# Core
from voicerelay.bridge import VoiceRelay
from voicerelay.config import BridgeConfig, load_agent_settings, load_config
from voicerelay.functions import FunctionRegistry
from voicerelay.session import SessionState, SessionStore, StreamPhase
from voicerelay.supervisor import ConnectionSupervisor, ConnectTimer

# Events
from voicerelay.core.events import (
    AgentAudio,
    AgentMessage,
    DTMFReceived,
    FunctionCall,
    FunctionCallRequest,
    FunctionCallResponse,
    InvalidFunctionCall,
    MarkReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
    TelephonyEvent,
    TelephonyEventType,
    UserStartedSpeaking,
)

# Audio
from voicerelay.audio.frame_buffer import FrameBuffer
from voicerelay.audio.noise_gate import NoiseGate, is_valid_chunk

# Relays
from voicerelay.relay import InboundRelay, OutboundRelay

# Serializers
from voicerelay.serializers.agent import AgentSerializer
from voicerelay.serializers.twilio import TwilioSerializer

# Transports
from voicerelay.transports.base import BaseTransport
from voicerelay.transports.websocket import (
    WebSocketClientTransport,
    WebSocketServer,
    WebSocketServerTransport,
)

__all__ = [
    # Core
    "VoiceRelay",
    "BridgeConfig",
    "load_config",
    "load_agent_settings",
    "FunctionRegistry",
    "SessionState",
    "SessionStore",
    "StreamPhase",
    "ConnectionSupervisor",
    "ConnectTimer",
    # Events
    "TelephonyEvent",
    "TelephonyEventType",
    "StreamConnected",
    "StreamStarted",
    "MediaReceived",
    "StreamStopped",
    "MarkReceived",
    "DTMFReceived",
    "AgentAudio",
    "AgentMessage",
    "UserStartedSpeaking",
    "FunctionCall",
    "FunctionCallRequest",
    "FunctionCallResponse",
    "InvalidFunctionCall",
    # Audio
    "FrameBuffer",
    "NoiseGate",
    "is_valid_chunk",
    # Relays
    "InboundRelay",
    "OutboundRelay",
    # Serializers
    "AgentSerializer",
    "TwilioSerializer",
    # Transports
    "BaseTransport",
    "WebSocketClientTransport",
    "WebSocketServerTransport",
    "WebSocketServer",
]
