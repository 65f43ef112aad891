"""End-to-end call flow through both real legs over in-memory channels."""

import asyncio

import pytest

from app.ai.duplex_base import SessionConfig
from app.ai.openai_realtime import OpenAIRealtimeLeg
from app.bridge import CallSessionBridge, SessionState
from app.core.diagnostics import DiagnosticLog, LogCategory
from app.telephony.media_stream import MediaStreamLeg
from tests.fakes import FakeChannel, wait_until


@pytest.fixture
def bridge(
    telephony_channel: FakeChannel,
    ai_channel: FakeChannel,
    session_config: SessionConfig,
    diagnostics: DiagnosticLog,
) -> CallSessionBridge:
    async def connect() -> FakeChannel:
        return ai_channel

    telephony = MediaStreamLeg(telephony_channel, diagnostics)
    ai = OpenAIRealtimeLeg(connect, session_config, diagnostics, greeting="Say hello.", ack_timeout_ms=20)
    return CallSessionBridge(telephony, ai, diagnostics, shutdown_grace=0.1)


class TestCallFlow:
    """Test a call from start to hang-up."""

    @pytest.mark.asyncio
    async def test_full_call(
        self,
        bridge: CallSessionBridge,
        telephony_channel: FakeChannel,
        ai_channel: FakeChannel,
        diagnostics: DiagnosticLog,
    ) -> None:
        """Test audio flows both ways and hang-up closes the backend."""
        task = asyncio.create_task(bridge.run())

        telephony_channel.feed({"event": "start", "start": {"streamSid": "CA123", "callSid": "CA-call"}})
        await wait_until(lambda: bridge.state is SessionState.ACTIVE)
        assert bridge.session.id == "CA123"
        await wait_until(lambda: len(ai_channel.sent) == 2)  # session.update, response.create

        # Backend -> caller
        ai_channel.feed({"type": "session.created", "session": {"model": "gpt-4o-realtime-preview"}})
        ai_channel.feed({"type": "response.audio.delta", "delta": "QUJD"})
        await wait_until(lambda: len(telephony_channel.sent) == 1)
        assert telephony_channel.sent_json() == [
            {"event": "media", "streamSid": "CA123", "media": {"payload": "QUJD"}}
        ]

        # Caller -> backend
        telephony_channel.feed({"event": "media", "media": {"timestamp": "20", "payload": "AAEC"}})
        await wait_until(lambda: len(ai_channel.sent) == 3)
        assert ai_channel.sent_json()[-1] == {"type": "input_audio_buffer.append", "audio": "AAEC"}
        assert bridge.session.latest_media_timestamp == 20

        ai_channel.feed({"type": "response.done", "response": {"status": "completed"}})
        await wait_until(lambda: bridge.session.stats.responses_completed == 1)
        messages = [entry.message for entry in diagnostics.snapshot()]
        assert "Response complete: 1 audio chunks sent" in messages

        telephony_channel.hang_up()
        session = await asyncio.wait_for(task, timeout=1.0)

        assert session.state is SessionState.CLOSED
        assert not ai_channel.open
        assert diagnostics.snapshot()[0].message == "Call session closed"

    @pytest.mark.asyncio
    async def test_malformed_messages_keep_call_alive(
        self,
        bridge: CallSessionBridge,
        telephony_channel: FakeChannel,
        ai_channel: FakeChannel,
        diagnostics: DiagnosticLog,
    ) -> None:
        """Test one bad frame per leg is logged and nothing else changes."""
        task = asyncio.create_task(bridge.run())
        telephony_channel.feed({"event": "start", "streamSid": "CA123", "start": {}})
        await wait_until(lambda: bridge.state is SessionState.ACTIVE)

        telephony_channel.feed("][")
        ai_channel.feed('{"no_type": true}')
        await wait_until(
            lambda: len([e for e in diagnostics.snapshot() if e.category is LogCategory.ERROR]) == 2
        )

        assert bridge.state is SessionState.ACTIVE
        assert bridge.session.id == "CA123"

        ai_channel.hang_up()
        await asyncio.wait_for(task, timeout=1.0)
        assert bridge.state is SessionState.CLOSED
        assert not telephony_channel.open

    @pytest.mark.asyncio
    async def test_backend_unreachable(
        self,
        telephony_channel: FakeChannel,
        session_config: SessionConfig,
        diagnostics: DiagnosticLog,
    ) -> None:
        """Test a failed backend connect ends the call instead of hanging."""

        async def refuse() -> FakeChannel:
            raise ConnectionError("connection refused")

        bridge = CallSessionBridge(
            MediaStreamLeg(telephony_channel, diagnostics),
            OpenAIRealtimeLeg(refuse, session_config, diagnostics),
            diagnostics,
            shutdown_grace=0.1,
        )

        session = await asyncio.wait_for(bridge.run(), timeout=1.0)

        assert session.state is SessionState.CLOSED
        assert not telephony_channel.open
        assert "AI leg failed" in [entry.message for entry in diagnostics.snapshot()]

    @pytest.mark.asyncio
    async def test_backend_error_event_keeps_call_alive(
        self,
        bridge: CallSessionBridge,
        telephony_channel: FakeChannel,
        ai_channel: FakeChannel,
        diagnostics: DiagnosticLog,
    ) -> None:
        """Test a backend error event is logged once and audio keeps flowing."""
        task = asyncio.create_task(bridge.run())
        telephony_channel.feed({"event": "start", "streamSid": "CA123", "start": {}})
        await wait_until(lambda: bridge.state is SessionState.ACTIVE)

        ai_channel.feed({
            "type": "error",
            "error": {"type": "invalid_request_error", "code": "bad_param", "message": "bad"},
        })
        ai_channel.feed({"type": "response.audio.delta", "delta": "QUJD"})
        await wait_until(lambda: len(telephony_channel.sent) == 1)

        errors = [e for e in diagnostics.snapshot() if e.category is LogCategory.ERROR]
        assert [e.message for e in errors] == ["Backend reported error"]
        assert errors[0].detail["error_message"] == "bad"
        assert bridge.state is SessionState.ACTIVE

        telephony_channel.hang_up()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event",
        [
            {"type": "response.done", "response": "oops"},
            {"type": "session.created", "session": "oops"},
            {"type": "response.created", "response": 42},
            {"type": "response.audio.delta", "delta": {"bytes": "QUJD"}},
            {"type": "response.audio_transcript.done", "transcript": ["hi"]},
        ],
    )
    async def test_unexpected_body_shape_keeps_call_alive(
        self,
        bridge: CallSessionBridge,
        telephony_channel: FakeChannel,
        ai_channel: FakeChannel,
        diagnostics: DiagnosticLog,
        event: dict,
    ) -> None:
        """Test well-formed events with odd bodies never end the call."""
        task = asyncio.create_task(bridge.run())
        telephony_channel.feed({"event": "start", "streamSid": "CA123", "start": {}})
        await wait_until(lambda: bridge.state is SessionState.ACTIVE)

        ai_channel.feed(event)
        ai_channel.feed({"type": "response.audio.delta", "delta": "QUJD"})
        await wait_until(lambda: len(telephony_channel.sent) == 1)

        assert bridge.state is SessionState.ACTIVE
        assert [e for e in diagnostics.snapshot() if e.category is LogCategory.ERROR] == []
        assert telephony_channel.sent_json()[0]["media"]["payload"] == "QUJD"

        telephony_channel.hang_up()
        await asyncio.wait_for(task, timeout=1.0)
