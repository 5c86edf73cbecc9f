"""Tests for the VoiceRelay config system."""

import json

import pytest
import yaml

from voicerelay.config import (
    DEFAULT_CONFIG_YAML,
    AgentConfig,
    BridgeConfig,
    TelephonyConfig,
    expand_env,
    load_agent_settings,
    load_config,
)


class TestBridgeConfig:

    def test_default_config(self):
        config = BridgeConfig()
        assert config.telephony.listen_port == 8881
        assert config.telephony.listen_path == "/twilio"
        assert config.agent.url == "wss://agent.deepgram.com/v1/agent/converse"
        assert config.agent.connect_timeout_seconds == 30.0
        assert config.audio.frame_size == 3200
        assert config.audio.min_chunk_size == 20
        assert config.audio.noise_gate is True
        assert config.audio.noise_threshold_ratio == 0.005
        assert config.audio.minimum_floor == 100

    def test_secrets_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-key")
        monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15550001111")
        config = BridgeConfig()
        assert config.agent.api_key == "dg-key"
        assert config.twilio.from_number == "+15550001111"

    def test_from_dict_nested(self):
        config = BridgeConfig.from_dict({
            "telephony": {"listen_port": 9000, "listen_path": "/media"},
            "audio": {"frame_size": 1600, "noise_gate": False},
        })
        assert config.telephony.listen_port == 9000
        assert config.telephony.listen_path == "/media"
        assert config.audio.frame_size == 1600
        assert config.audio.noise_gate is False

    def test_from_dict_shorthand(self):
        config = BridgeConfig.from_dict({
            "listen_port": 8765,
            "agent_url": "ws://localhost:9000/agent",
            "connect_timeout": 5,
            "log_level": "DEBUG",
        })
        assert config.telephony.listen_port == 8765
        assert config.agent.url == "ws://localhost:9000/agent"
        assert config.agent.connect_timeout_seconds == 5
        assert config.logging.level == "DEBUG"

    def test_shorthand_merges_with_section(self):
        config = BridgeConfig.from_dict({
            "telephony": {"listen_path": "/media"},
            "listen_port": 9100,
        })
        assert config.telephony.listen_path == "/media"
        assert config.telephony.listen_port == 9100

    def test_load_config_variants(self):
        original = BridgeConfig()
        assert load_config(original) is original
        assert load_config(None).telephony.listen_port == 8881
        assert load_config({"frame_size": 640}).audio.frame_size == 640

    def test_load_config_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(tmp_path / "nope.yaml")

    def test_load_config_bad_type(self):
        with pytest.raises(TypeError):
            load_config(42)

    def test_from_yaml_expands_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NGROK_URL", "https://abc.ngrok.app")
        monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
        path = tmp_path / "bridge.yaml"
        path.write_text(DEFAULT_CONFIG_YAML)
        config = load_config(path)
        assert config.telephony.public_url == "https://abc.ngrok.app"
        assert config.agent.api_key == ""
        assert config.telephony.stream_url == "wss://abc.ngrok.app/twilio"

    def test_default_yaml_is_valid(self):
        data = yaml.safe_load(DEFAULT_CONFIG_YAML)
        config = BridgeConfig.from_dict(data)
        assert config.audio.frame_size == 3200
        assert config.agent.settings_path == "config.json"


class TestStreamUrl:

    def test_empty_without_public_url(self):
        assert TelephonyConfig(public_url="").stream_url == ""

    def test_http_becomes_ws(self):
        config = TelephonyConfig(public_url="http://localhost:8881/", listen_path="/twilio")
        assert config.stream_url == "ws://localhost:8881/twilio"

    def test_bare_host(self):
        assert TelephonyConfig(public_url="abc.ngrok.app").stream_url == "wss://abc.ngrok.app/twilio"


class TestExpandEnv:

    def test_set_and_unset(self, monkeypatch):
        monkeypatch.setenv("VR_SET", "value")
        monkeypatch.delenv("VR_UNSET", raising=False)
        assert expand_env("a=${VR_SET} b=${VR_UNSET}") == "a=value b="


class TestAgentSettings:

    def test_inline_settings_win(self, tmp_path):
        config = AgentConfig(settings={"type": "Settings"}, settings_path=str(tmp_path / "x.json"))
        assert load_agent_settings(config) == {"type": "Settings"}

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"type": "Settings", "agent": {"language": "es"}}))
        settings = load_agent_settings(AgentConfig(settings_path=str(path)))
        assert settings["agent"]["language"] == "es"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_agent_settings(AgentConfig(settings_path=str(tmp_path / "missing.json")))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{nope")
        with pytest.raises(ValueError):
            load_agent_settings(AgentConfig(settings_path=str(path)))

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_agent_settings(AgentConfig(settings_path=str(path)))


class TestCli:

    def test_init_writes_template(self, tmp_path):
        from voicerelay.cli import main

        output = tmp_path / "bridge.yaml"
        main(["init", "--output", str(output)])
        assert output.read_text() == DEFAULT_CONFIG_YAML

    def test_init_refuses_overwrite(self, tmp_path):
        from voicerelay.cli import main

        output = tmp_path / "bridge.yaml"
        output.write_text("keep me")
        with pytest.raises(SystemExit):
            main(["init", "--output", str(output)])
        assert output.read_text() == "keep me"

    def test_init_force(self, tmp_path):
        from voicerelay.cli import main

        output = tmp_path / "bridge.yaml"
        output.write_text("old")
        main(["init", "--output", str(output), "--force"])
        assert output.read_text() == DEFAULT_CONFIG_YAML

    def test_run_missing_config(self, tmp_path):
        from voicerelay.cli import main

        with pytest.raises(SystemExit):
            main(["run", "--config", str(tmp_path / "missing.yaml")])
