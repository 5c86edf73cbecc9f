"""Tests for the per-connection supervisor, its connect timer and the bridge."""

import asyncio
import json

import pytest

from voicerelay.bridge import VoiceRelay
from voicerelay.config import AgentConfig, AudioConfig, BridgeConfig
from voicerelay.supervisor import ConnectionSupervisor, ConnectTimer

from helpers import FakeTransport, media_message, pcm, start_message, stop_message, wait_until

SETTINGS = {"type": "Settings", "audio": {"input": {"encoding": "linear16", "sample_rate": 8000}}}


def _config(timeout=30.0):
    return BridgeConfig(
        agent=AgentConfig(settings=SETTINGS, connect_timeout_seconds=timeout),
        audio=AudioConfig(noise_gate=False),
    )


class TestConnectTimer:

    @pytest.mark.asyncio
    async def test_fires_after_timeout(self):
        fired = asyncio.Event()

        async def on_expire():
            fired.set()

        timer = ConnectTimer(0.01, on_expire)
        timer.start()
        await asyncio.wait_for(fired.wait(), 1.0)
        assert timer.expired
        assert timer.active is False

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        calls = []

        async def on_expire():
            calls.append(1)

        timer = ConnectTimer(0.02, on_expire)
        timer.start()
        assert timer.cancel() is True
        assert timer.cancel() is False
        assert timer.cancel() is False
        await asyncio.sleep(0.05)
        assert calls == []
        assert timer.expired is False

    @pytest.mark.asyncio
    async def test_shutdown_logs_handler_failure(self):
        async def on_expire():
            raise RuntimeError("telephony already gone")

        timer = ConnectTimer(0.01, on_expire)
        timer.start()
        await wait_until(lambda: timer.expired)
        await timer.shutdown()
        assert timer._expire_task is None

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        async def on_expire():
            pass

        timer = ConnectTimer(0.01, on_expire)
        assert timer.cancel() is False


class TestConnectionSupervisor:

    @pytest.mark.asyncio
    async def test_settings_sent_before_audio(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())

        await wait_until(lambda: sup.agent_ready)
        telephony.feed(start_message("MZ1"))
        telephony.feed(media_message(pcm(1000, 1600)))
        await wait_until(lambda: len(agent.sent) >= 2)

        assert json.loads(agent.sent[0]) == SETTINGS
        assert agent.sent[1] == pcm(1000, 1600)
        assert sup.timer.active is False

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_audio_dropped_before_agent_ready(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport(connect_forever=True)
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())

        telephony.feed(start_message("MZ1"))
        telephony.feed(media_message(pcm(1000, 1600)))
        await wait_until(lambda: sup.inbound.frames_dropped == 1)
        assert agent.sent == []

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_timeout_closes_telephony(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport(connect_forever=True)
        sup = ConnectionSupervisor(telephony, _config(timeout=0.02), SETTINGS, agent=agent)

        await asyncio.wait_for(sup.run(), 1.0)

        assert sup.timer.expired
        assert telephony.disconnect_calls >= 1
        assert sup.session.is_active is False

    @pytest.mark.asyncio
    async def test_failed_agent_connect_still_times_out(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport(connect_error=OSError("connection refused"))
        sup = ConnectionSupervisor(telephony, _config(timeout=0.02), SETTINGS, agent=agent)

        await asyncio.wait_for(sup.run(), 1.0)

        assert agent.connect_calls == 1
        assert sup.timer.expired
        assert agent.sent == []

    @pytest.mark.asyncio
    async def test_telephony_close_closes_agent(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())
        await wait_until(lambda: sup.agent_ready)

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

        assert agent.is_connected() is False
        assert agent.disconnect_calls == 1
        assert sup.inbound.agent is None

    @pytest.mark.asyncio
    async def test_agent_close_keeps_telephony_open(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())
        await wait_until(lambda: sup.agent_ready)
        telephony.feed(start_message("MZ1"))
        await wait_until(lambda: sup.session.is_streaming)

        agent.close_remote()
        await wait_until(lambda: sup._agent_task.done())
        assert telephony.is_connected()

        telephony.feed(stop_message("MZ1"))
        await wait_until(lambda: sup.session.stream_sid is None)
        assert task.done() is False

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)
        assert telephony.disconnect_calls == 0

    @pytest.mark.asyncio
    async def test_agent_messages_reach_telephony(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())
        await wait_until(lambda: sup.agent_ready)
        telephony.feed(start_message("abc"))
        await wait_until(lambda: sup.session.is_streaming)

        agent.feed(json.dumps({"type": "UserStartedSpeaking"}))
        await wait_until(lambda: len(telephony.sent) == 1)
        assert telephony.sent_json == [{"event": "clear", "streamSid": "abc"}]

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_malformed_telephony_messages_do_not_end_call(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())
        await wait_until(lambda: sup.agent_ready)

        telephony.feed(start_message("MZ1"))
        telephony.feed(json.dumps({"event": "media", "media": {"track": "inbound", "payload": None}}))
        telephony.feed(json.dumps({"event": "start", "start": {"streamSid": "MZ1", "callSid": None}}))
        telephony.feed(json.dumps({"event": "media", "media": "oops"}))
        telephony.feed(media_message(pcm(1000, 1600)))
        await wait_until(lambda: len(agent.sent) >= 2)

        assert agent.sent[1] == pcm(1000, 1600)
        assert task.done() is False
        assert agent.disconnect_calls == 0

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_agent_handler_error_keeps_agent_loop(self, monkeypatch):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        task = asyncio.create_task(sup.run())
        await wait_until(lambda: sup.agent_ready)
        telephony.feed(start_message("abc"))
        await wait_until(lambda: sup.session.is_streaming)

        handled = []
        original = sup.outbound.handle_message

        async def flaky(raw):
            handled.append(raw)
            if len(handled) == 1:
                raise RuntimeError("boom")
            await original(raw)

        monkeypatch.setattr(sup.outbound, "handle_message", flaky)
        agent.feed(b"\x01\x02\x03\x04")
        agent.feed(json.dumps({"type": "UserStartedSpeaking"}))
        await wait_until(lambda: len(telephony.sent) == 1)

        assert telephony.sent_json == [{"event": "clear", "streamSid": "abc"}]
        assert sup._agent_task.done() is False

        telephony.close_remote()
        await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_close_waits_for_timeout_handler(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport(connect_forever=True)
        sup = ConnectionSupervisor(telephony, _config(timeout=0.01), SETTINGS, agent=agent)
        release = asyncio.Event()
        finished = []

        async def slow_timeout():
            await release.wait()
            finished.append(True)

        sup.timer = ConnectTimer(0.01, slow_timeout)
        sup.timer.start()
        await wait_until(lambda: sup.timer.expired)
        expire_task = sup.timer._expire_task

        closing = asyncio.create_task(sup.close())
        await asyncio.sleep(0.02)
        assert closing.done() is False

        release.set()
        await asyncio.wait_for(closing, 1.0)
        assert finished == [True]
        assert expire_task.done()
        assert sup.timer._expire_task is None

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        telephony = FakeTransport(connected=True)
        agent = FakeTransport()
        sup = ConnectionSupervisor(telephony, _config(), SETTINGS, agent=agent)
        await sup.close()
        await sup.close()
        assert agent.disconnect_calls == 1


class TestVoiceRelay:

    def test_functions_from_mapping(self):
        relay = VoiceRelay(_config(), functions={"ping": lambda args: "pong"})
        assert relay.functions.names == ["ping"]
        assert relay.agent_settings == SETTINGS

    def test_missing_settings_file(self, tmp_path):
        config = BridgeConfig(agent=AgentConfig(settings_path=str(tmp_path / "missing.json")))
        with pytest.raises(ValueError):
            VoiceRelay(config)

    @pytest.mark.asyncio
    async def test_sessions_tracked_per_connection(self):
        agents = []

        def factory():
            agent = FakeTransport()
            agents.append(agent)
            return agent

        relay = VoiceRelay(_config(), agent_factory=factory)
        first = FakeTransport(connected=True)
        second = FakeTransport(connected=True)
        t1 = asyncio.create_task(relay.handle_telephony_connection(first))
        t2 = asyncio.create_task(relay.handle_telephony_connection(second))
        await wait_until(lambda: relay.sessions.active_count == 2)

        first.feed(start_message("MZa"))
        second.feed(start_message("MZb"))
        await wait_until(lambda: relay.sessions.get_by_stream_sid("MZb") is not None)
        assert relay.sessions.get_by_stream_sid("MZa") is not None
        assert len(agents) == 2

        first.close_remote()
        await asyncio.wait_for(t1, 1.0)
        assert relay.sessions.active_count == 1

        second.close_remote()
        await asyncio.wait_for(t2, 1.0)
        assert relay.sessions.active_count == 0
