"""Configuration system for VoiceRelay.

Supports loading from YAML files, dicts, or programmatic construction via
Pydantic models. ``${VAR}`` references in YAML are expanded from the
environment, and secrets default to the usual environment variables.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def expand_env(text: str) -> str:
    """Replace ``${VAR}`` references with environment values (empty when unset)."""
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), text)


def _env(name: str) -> Any:
    return Field(default_factory=lambda: os.environ.get(name, ""))


class TelephonyConfig(BaseModel):
    """Where Twilio connects to."""

    listen_host: str = "0.0.0.0"
    listen_port: int = 8881
    listen_path: str = "/twilio"
    # Public base URL (e.g. an ngrok https URL) used to build the stream URL
    public_url: str = _env("NGROK_URL")

    @property
    def stream_url(self) -> str:
        """WebSocket URL Twilio should open, derived from ``public_url``."""
        base = self.public_url.rstrip("/")
        if not base:
            return ""
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        elif not base.startswith(("ws://", "wss://")):
            base = f"wss://{base}"
        return f"{base}{self.listen_path}"


class AgentConfig(BaseModel):
    """Speech-to-speech agent connection."""

    url: str = "wss://agent.deepgram.com/v1/agent/converse"
    api_key: str = _env("DEEPGRAM_API_KEY")
    # Settings JSON sent as the first message; inline settings win over the file
    settings_path: str = "config.json"
    settings: dict[str, Any] | None = None
    connect_timeout_seconds: float = 30.0


class AudioConfig(BaseModel):
    """Inbound audio pipeline configuration."""

    frame_size: int = 20 * 160
    min_chunk_size: int = 20
    probe_bytes: int = 100
    noise_gate: bool = True
    noise_threshold_ratio: float = 0.005
    minimum_floor: float = 100.0


class TwilioConfig(BaseModel):
    """Twilio REST credentials and call defaults."""

    account_sid: str = _env("TWILIO_ACCOUNT_SID")
    auth_token: str = _env("TWILIO_AUTH_TOKEN")
    from_number: str = _env("TWILIO_PHONE_NUMBER")
    to_number: str = _env("CUSTOMER_PHONE_NUMBER")
    greeting: str = "Hola."
    voice: str = "alice"
    language: str = "es-ES"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class BridgeConfig(BaseModel):
    """Top-level VoiceRelay configuration.

    Examples:
        # Programmatic
        config = BridgeConfig(agent=AgentConfig(api_key="..."))

        # From YAML
        config = BridgeConfig.from_yaml("bridge.yaml")

        # Shorthand
        config = BridgeConfig.from_dict({
            "listen_port": 8881,
            "agent_url": "wss://agent.deepgram.com/v1/agent/converse",
            "frame_size": 3200,
        })
    """

    telephony: TelephonyConfig = Field(default_factory=TelephonyConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    # "package.module:ATTRIBUTE" of the deployment's function map
    functions: str = ""

    @classmethod
    def from_yaml(cls, path: str | Path) -> BridgeConfig:
        """Load configuration from a YAML file, expanding ``${VAR}`` references."""
        path = Path(path)
        text = expand_env(path.read_text())
        data = yaml.safe_load(text) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        """Load configuration from a dictionary.

        Supports both the nested format and flat shorthand keys such as
        ``listen_port``, ``agent_url`` or ``frame_size``.
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> BridgeConfig:
        """Normalize and construct config from a raw dict."""
        flat_mappings = {
            "listen_host": ("telephony", "listen_host"),
            "listen_port": ("telephony", "listen_port"),
            "listen_path": ("telephony", "listen_path"),
            "public_url": ("telephony", "public_url"),
            "agent_url": ("agent", "url"),
            "agent_api_key": ("agent", "api_key"),
            "agent_settings": ("agent", "settings_path"),
            "connect_timeout": ("agent", "connect_timeout_seconds"),
            "frame_size": ("audio", "frame_size"),
            "noise_gate": ("audio", "noise_gate"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                section_data = dict(data.get(section) or {})
                section_data[nested_key] = data.pop(flat_key)
                data[section] = section_data

        return cls(**data)


def load_config(source: str | Path | dict[str, Any] | BridgeConfig | None = None) -> BridgeConfig:
    """Load a BridgeConfig from any supported source.

    Args:
        source: A YAML file path, a dict, an existing BridgeConfig, or None
            for defaults.
    """
    if source is None:
        return BridgeConfig()
    if isinstance(source, BridgeConfig):
        return source
    if isinstance(source, dict):
        return BridgeConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise ValueError(f"Config file not found: {path}")
        return BridgeConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


def load_agent_settings(config: AgentConfig) -> dict[str, Any]:
    """Return the agent settings payload sent as the first agent message.

    Raises:
        ValueError: If the settings file is missing or is not a JSON object.
    """
    if config.settings is not None:
        return config.settings

    path = Path(config.settings_path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load agent configuration from {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Agent configuration in {path} must be a JSON object")
    return data


# Default YAML template for `voicerelay init`
DEFAULT_CONFIG_YAML = """\
# VoiceRelay Configuration

telephony:
  listen_host: 0.0.0.0
  listen_port: 8881
  listen_path: /twilio
  public_url: "${NGROK_URL}"      # used to build the <Stream> URL in TwiML

agent:
  url: wss://agent.deepgram.com/v1/agent/converse
  api_key: "${DEEPGRAM_API_KEY}"
  settings_path: config.json    # agent settings sent on connect
  connect_timeout_seconds: 30

audio:
  frame_size: 3200              # 20 x 160 bytes of PCM16
  min_chunk_size: 20
  probe_bytes: 100
  noise_gate: true
  noise_threshold_ratio: 0.005
  minimum_floor: 100

twilio:
  account_sid: "${TWILIO_ACCOUNT_SID}"
  auth_token: "${TWILIO_AUTH_TOKEN}"
  from_number: "${TWILIO_PHONE_NUMBER}"
  to_number: "${CUSTOMER_PHONE_NUMBER}"

# functions: my_project.functions:FUNCTION_MAP

logging:
  level: INFO
"""
