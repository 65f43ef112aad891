"""Call session bridge: one phone call between a telephony and an AI leg.

State machine:

    CONNECTING -> AWAITING_START -> ACTIVE -> CLOSING -> CLOSED

- CONNECTING: both legs opening
- AWAITING_START: AI session configured, waiting for the telephony start
- ACTIVE: stream id known, audio relayed both ways
- CLOSING: one leg ended, the other is being closed
- CLOSED: terminal

Any leg close or transport error ends the session; there is no reconnect.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from app.ai.duplex_base import AiEvent, AiEventType
from app.bridge.legs import AiLeg, Leg, TelephonyLeg
from app.core.channel import ChannelClosed
from app.core.constants import AudioConstants
from app.core.diagnostics import DiagnosticLog, LogCategory
from app.telephony.media_base import AudioFrame


class SessionState(Enum):
    """Call session lifecycle."""

    CONNECTING = "connecting"
    AWAITING_START = "awaiting_start"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({SessionState.CLOSING, SessionState.CLOSED})

_LEG_LABELS = {"ai": "AI", "telephony": "Telephony"}


@dataclass
class RelayStats:
    """Per-session relay counters."""

    caller_frames_forwarded: int = 0
    caller_frames_dropped: int = 0
    ai_frames_forwarded: int = 0
    ai_frames_dropped: int = 0
    responses_completed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "caller_frames_forwarded": self.caller_frames_forwarded,
            "caller_frames_dropped": self.caller_frames_dropped,
            "ai_frames_forwarded": self.ai_frames_forwarded,
            "ai_frames_dropped": self.ai_frames_dropped,
            "responses_completed": self.responses_completed,
        }


@dataclass
class CallSession:
    """State of one phone call."""

    id: Optional[str] = None
    state: SessionState = SessionState.CONNECTING
    latest_media_timestamp: int = 0
    audio_chunk_counter: int = 0
    created_at: float = field(default_factory=time.time)
    stats: RelayStats = field(default_factory=RelayStats)


class DropIfNotWritable:
    """Relay policy: forward a frame only if the target leg is writable.

    Frames are never buffered or retried; stale audio is worthless.
    """

    name = "drop_if_not_writable"

    def admit(self, target: Leg) -> bool:
        return target.writable


class CallSessionBridge:
    """Owns one telephony leg and one AI leg for the lifetime of a call."""

    def __init__(
        self,
        telephony: TelephonyLeg,
        ai: AiLeg,
        diagnostics: DiagnosticLog,
        policy: Optional[DropIfNotWritable] = None,
        shutdown_grace: float = 1.0,
    ) -> None:
        """Initialize the bridge.

        Args:
            telephony: Telephony-facing leg
            ai: AI-backend-facing leg
            diagnostics: Shared diagnostic log
            policy: Frame admission policy for both directions
            shutdown_grace: Seconds to let leg loops finish after teardown
        """
        self._telephony = telephony
        self._ai = ai
        self._diagnostics = diagnostics
        self._policy = policy or DropIfNotWritable()
        self._shutdown_grace = shutdown_grace

        self._session = CallSession()
        self._closed = asyncio.Event()

        self._logger = structlog.get_logger(__name__)

    @property
    def session(self) -> CallSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    def _set_state(self, state: SessionState) -> None:
        previous = self._session.state
        if previous is state:
            return
        self._session.state = state
        self._logger.info("Session state", previous=previous.value, state=state.value)

    def _record(self, category: LogCategory, message: str, /, **detail: Any) -> None:
        if self._session.id is not None:
            detail.setdefault("stream_sid", self._session.id)
        self._diagnostics.append(category, message, detail or None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> CallSession:
        """Run both legs until the session is closed.

        Returns:
            The final session record
        """
        self._record(LogCategory.SESSION, "Call session connecting")

        try:
            async with asyncio.TaskGroup() as tg:
                legs = [
                    tg.create_task(self._ai.run(self), name="bridge-ai-leg"),
                    tg.create_task(self._telephony.run(self), name="bridge-telephony-leg"),
                ]
                tg.create_task(self._reap(legs), name="bridge-reaper")

        except* Exception as eg:
            for exc in eg.exceptions:
                self._logger.error(
                    f"Bridge task failed: {type(exc).__name__}: {exc}",
                    exc_info=exc,
                )
                self._record(LogCategory.ERROR, "Bridge task failed", error=repr(exc))

        finally:
            if self._session.state is not SessionState.CLOSED:
                await self._teardown(None, "bridge stopped")

        return self._session

    async def close(self) -> None:
        """Close both legs from outside (e.g. server shutdown)."""
        await self._teardown(None, "closed by server")

    async def _reap(self, legs: list[asyncio.Task[None]]) -> None:
        """After teardown, give leg loops a grace period, then cancel them."""
        await self._closed.wait()

        pending = [task for task in legs if not task.done()]
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=self._shutdown_grace)
        for task in still_running:
            self._logger.debug("Cancelling leg task", task=task.get_name())
            task.cancel()

    async def _teardown(self, origin: Optional[Leg], reason: str) -> None:
        """Close every leg except origin, exactly once per session."""
        if self._session.state in TERMINAL_STATES:
            return

        previous = self._session.state
        self._set_state(SessionState.CLOSING)
        self._record(
            LogCategory.SESSION,
            "Call session closing",
            reason=reason,
            origin=origin.name if origin else None,
            previous_state=previous.value,
        )

        for leg in (self._telephony, self._ai):
            if leg is origin:
                continue
            try:
                await leg.close()
            except Exception as e:
                self._logger.error(f"Error closing {leg.name} leg: {e}", exc_info=True)

        self._set_state(SessionState.CLOSED)
        self._record(
            LogCategory.SESSION,
            "Call session closed",
            duration_s=round(time.time() - self._session.created_at, 1),
            **self._session.stats.to_dict(),
        )
        self._closed.set()

    async def on_leg_closed(self, leg: Leg) -> None:
        await self._teardown(leg, f"{leg.name} leg closed")

    async def on_leg_error(self, leg: Leg, error: BaseException) -> None:
        self._record(
            LogCategory.ERROR,
            f"{_LEG_LABELS.get(leg.name, leg.name)} leg failed",
            error=f"{type(error).__name__}: {error}",
        )
        # The failed leg may still hold resources; closing is idempotent
        await self._teardown(None, f"{leg.name} leg error")

    # ------------------------------------------------------------------
    # Telephony leg events
    # ------------------------------------------------------------------

    async def on_stream_started(self, stream_sid: str, metadata: Dict[str, Any]) -> None:
        if self._session.id is not None:
            self._record(
                LogCategory.TELEPHONY,
                "Duplicate start ignored",
                ignored_stream_sid=stream_sid,
            )
            return

        if self._session.state in TERMINAL_STATES:
            self._logger.debug("Start after teardown ignored", stream_sid=stream_sid)
            return

        self._session.id = stream_sid
        self._session.latest_media_timestamp = 0
        self._logger = self._logger.bind(stream_sid=stream_sid)

        self._record(
            LogCategory.TELEPHONY,
            "Stream started",
            call_sid=metadata.get("callSid"),
        )

        if self._session.state is SessionState.AWAITING_START:
            self._set_state(SessionState.ACTIVE)

    async def on_caller_audio(self, frame: AudioFrame) -> None:
        session = self._session
        if frame.timestamp > session.latest_media_timestamp:
            session.latest_media_timestamp = frame.timestamp

        if session.state in TERMINAL_STATES or not self._policy.admit(self._ai):
            session.stats.caller_frames_dropped += 1
            return

        try:
            await self._ai.send_audio(frame.payload)
        except ChannelClosed as e:
            # The AI leg reports its own close
            session.stats.caller_frames_dropped += 1
            self._logger.debug("Caller frame dropped, backend closing", reason=str(e))
            return
        except Exception as e:
            await self.on_leg_error(self._ai, e)
            return

        session.stats.caller_frames_forwarded += 1
        if session.stats.caller_frames_forwarded % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.info(
                "Caller frames forwarded",
                count=session.stats.caller_frames_forwarded,
                direction="telephony -> AI",
            )

    # ------------------------------------------------------------------
    # AI leg events
    # ------------------------------------------------------------------

    async def on_ai_opened(self) -> None:
        self._record(LogCategory.SESSION, "AI session opened, configuration sent")

        if self._session.state is SessionState.CONNECTING:
            if self._session.id is not None:
                self._set_state(SessionState.ACTIVE)
            else:
                self._set_state(SessionState.AWAITING_START)

    async def on_ai_audio(self, payload: str) -> None:
        session = self._session
        session.audio_chunk_counter += 1

        if session.id is None:
            session.stats.ai_frames_dropped += 1
            # One entry per response; every drop is still counted
            if session.audio_chunk_counter == 1:
                self._record(LogCategory.AUDIO, "AI audio dropped before stream start")
            return

        if session.state in TERMINAL_STATES or not self._policy.admit(self._telephony):
            session.stats.ai_frames_dropped += 1
            return

        try:
            await self._telephony.send_audio(payload, session.id)
        except ChannelClosed as e:
            session.stats.ai_frames_dropped += 1
            self._logger.debug("AI frame dropped, telephony closing", reason=str(e))
            return
        except Exception as e:
            await self.on_leg_error(self._telephony, e)
            return

        session.stats.ai_frames_forwarded += 1
        if session.stats.ai_frames_forwarded % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.info(
                "AI frames forwarded",
                count=session.stats.ai_frames_forwarded,
                direction="AI -> telephony",
            )

    async def on_ai_transcript(self, text: str) -> None:
        self._record(LogCategory.TRANSCRIPT, f"Agent said: {text}", transcript=text)

    async def on_ai_session_state(self, event: AiEvent) -> None:
        if event.type is AiEventType.RESPONSE_CREATED:
            self._record(LogCategory.AI, "Response started", response_id=event.response.get("id"))
            return

        params = event.session
        self._record(
            LogCategory.AI,
            f"Backend {event.wire_type}",
            model=params.get("model"),
            voice=params.get("voice"),
            modalities=params.get("modalities"),
            input_audio_format=params.get("input_audio_format"),
            output_audio_format=params.get("output_audio_format"),
        )

    async def on_ai_response_done(self, event: AiEvent) -> None:
        chunks = self._session.audio_chunk_counter
        self._session.audio_chunk_counter = 0
        self._session.stats.responses_completed += 1

        self._record(
            LogCategory.AI,
            f"Response complete: {chunks} audio chunks sent",
            audio_chunks=chunks,
            status=event.response.get("status"),
        )

    async def on_ai_error(self, event: AiEvent) -> None:
        error = event.error
        self._record(
            LogCategory.ERROR,
            "Backend reported error",
            error_type=error.get("type"),
            code=error.get("code"),
            error_message=error.get("message"),
        )
