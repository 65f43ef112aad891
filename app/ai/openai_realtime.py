"""OpenAI Realtime API leg.

Bidirectional G.711 mu-law audio with the realtime backend:

1. Open the backend WebSocket (authenticated by the connector)
2. Send session.update (server VAD, g711_ulaw in/out, voice, instructions,
   text+audio modalities, temperature)
3. Wait for the session.updated acknowledgment, bounded by a settle timeout
4. Send response.create so the agent greets the caller first
5. Interpret inbound events and report them to the bridge

Audio is relayed as the base64 payload the telephony gateway sent;
no resampling or transcoding happens here.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from app.ai.duplex_base import AiEvent, AiEventType, HandshakeState, SessionConfig
from app.bridge import translator
from app.bridge.legs import AiEvents
from app.core.channel import ChannelClosed, DuplexChannel
from app.core.constants import AudioConstants, BridgeConstants
from app.core.diagnostics import DiagnosticLog, LogCategory

ChannelConnector = Callable[[], Awaitable[DuplexChannel]]


class OpenAIRealtimeLeg:
    """AI leg speaking the realtime session protocol."""

    name = "ai"

    def __init__(
        self,
        connect: ChannelConnector,
        session: SessionConfig,
        diagnostics: DiagnosticLog,
        greeting: Optional[str] = None,
        ack_timeout_ms: int = BridgeConstants.HANDSHAKE_ACK_TIMEOUT_MS,
    ) -> None:
        """Initialize the leg.

        Args:
            connect: Coroutine factory opening the backend channel
            session: Session parameters for session.update
            diagnostics: Shared diagnostic log
            greeting: Instructions for the first, unprompted response
            ack_timeout_ms: Max wait for session.updated before greeting
        """
        self._connect = connect
        self._session = session
        self._diagnostics = diagnostics
        self._greeting = greeting
        self._ack_timeout = ack_timeout_ms / 1000.0

        self._channel: Optional[DuplexChannel] = None
        self._state = HandshakeState.CONNECTING
        self._acknowledged = asyncio.Event()
        self._handshake_task: Optional[asyncio.Task[None]] = None
        self._handshake_failure: Optional[BaseException] = None
        self._closed = False

        # Stats
        self._audio_frames_sent = 0
        self._events_received = 0

        self._logger = structlog.get_logger(__name__)

    @property
    def state(self) -> HandshakeState:
        """Current handshake state."""
        return self._state

    @property
    def writable(self) -> bool:
        return (
            not self._closed
            and self._channel is not None
            and self._channel.open
            and self._state >= HandshakeState.CONFIGURED
        )

    @property
    def audio_frames_sent(self) -> int:
        return self._audio_frames_sent

    def _advance(self, state: HandshakeState) -> None:
        if state > self._state:
            self._logger.debug("Handshake state", previous=self._state.name, state=state.name)
            self._state = state

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._channel is None:
            raise ChannelClosed("AI channel not open")
        await self._channel.send_text(translator.encode(message))

    async def send_audio(self, payload: str) -> None:
        """Append one caller audio frame to the backend input buffer.

        Raises:
            ChannelClosed: If the backend channel is gone
        """
        await self._send(translator.ai_audio_append(payload))

        self._audio_frames_sent += 1
        if self._audio_frames_sent % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.debug("Sent audio frames to backend", count=self._audio_frames_sent)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._handshake_task and not self._handshake_task.done():
            self._handshake_task.cancel()

        if self._channel is not None:
            await self._channel.close()

        self._logger.info(
            "AI leg closed",
            audio_frames_sent=self._audio_frames_sent,
            events_received=self._events_received,
        )

    async def run(self, handler: AiEvents) -> None:
        """Connect, run the handshake and receive until the channel ends."""
        try:
            self._channel = await self._connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("Failed to connect to realtime backend", error=str(e))
            self._closed = True
            await handler.on_leg_error(self, e)
            return

        if self._closed:
            # Session torn down while we were connecting
            await self._channel.close()
            await handler.on_leg_closed(self)
            return

        self._advance(HandshakeState.OPENED)
        self._logger.info("Realtime backend connected")

        failure: Optional[BaseException] = None
        self._handshake_task = asyncio.create_task(
            self._handshake(handler), name="ai-leg-handshake"
        )
        try:
            await self._receive_loop(handler)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("AI leg transport error", error=str(e), exc_info=True)
            failure = e
        finally:
            if not self._handshake_task.done():
                self._handshake_task.cancel()
                try:
                    await self._handshake_task
                except asyncio.CancelledError:
                    self._logger.debug("Handshake task cancelled")

        failure = failure or self._handshake_failure
        self._closed = True
        try:
            await self._channel.close()
        except Exception as e:
            self._logger.warning("Error closing backend channel", error=str(e))

        if failure is not None:
            await handler.on_leg_error(self, failure)
        else:
            await handler.on_leg_closed(self)

    async def _handshake(self, handler: AiEvents) -> None:
        """Configure the session, then trigger the greeting."""
        try:
            await self._send(translator.session_update(self._session))
            self._advance(HandshakeState.CONFIGURED)
            self._logger.info(
                "Sent session.update",
                voice=self._session.voice,
                modalities=list(self._session.modalities),
                instructions_length=len(self._session.instructions),
            )
            await handler.on_ai_opened()

            try:
                async with asyncio.timeout(self._ack_timeout):
                    await self._acknowledged.wait()
            except TimeoutError:
                self._logger.info(
                    "No session.updated within settle window, greeting anyway",
                    timeout_ms=int(self._ack_timeout * 1000),
                )

            await self._send(translator.response_create(self._session, self._greeting))
            self._advance(HandshakeState.GREETED)
            self._logger.info(
                "Greeting request sent",
                greeting_preview=self._greeting[:50] if self._greeting else None,
            )

        except ChannelClosed as e:
            self._logger.info("Backend closed during handshake", reason=str(e))
        except Exception as e:
            self._logger.error("Handshake failed", error=str(e), exc_info=True)
            self._handshake_failure = e
            if self._channel is not None:
                await self._channel.close()

    async def _receive_loop(self, handler: AiEvents) -> None:
        assert self._channel is not None

        while True:
            try:
                raw = await self._channel.receive_text()
            except ChannelClosed as e:
                self._logger.info("Backend channel ended", reason=str(e))
                return

            try:
                event = translator.parse_ai_event(raw)
            except translator.MalformedMessageError as e:
                self._diagnostics.append(
                    LogCategory.ERROR,
                    "Malformed AI message dropped",
                    {"error": str(e), "preview": raw[:80]},
                )
                continue

            self._events_received += 1
            await self._dispatch(event, handler)

    async def _dispatch(self, event: AiEvent, handler: AiEvents) -> None:
        if event.type is not AiEventType.AUDIO_DELTA:
            self._logger.debug("Backend event", type=event.wire_type)

        if event.type is AiEventType.AUDIO_DELTA:
            payload = event.audio
            if payload:
                await handler.on_ai_audio(payload)
            else:
                self._logger.debug("Audio delta without payload", type=event.wire_type)

        elif event.type is AiEventType.SESSION_UPDATED:
            self._acknowledged.set()
            self._advance(HandshakeState.ACTIVE)
            await handler.on_ai_session_state(event)

        elif event.type in (AiEventType.SESSION_CREATED, AiEventType.RESPONSE_CREATED):
            await handler.on_ai_session_state(event)

        elif event.type is AiEventType.TRANSCRIPT_FINAL:
            await handler.on_ai_transcript(event.transcript or "")

        elif event.type is AiEventType.RESPONSE_DONE:
            await handler.on_ai_response_done(event)

        elif event.type is AiEventType.ERROR:
            await handler.on_ai_error(event)
