"""Telephony media-stream leg.

Wraps the inbound WebSocket opened by the telephony gateway, parses its
event stream and reports start/media/close to the bridge.
"""

import asyncio
from typing import Optional

import structlog

from app.bridge import translator
from app.bridge.legs import TelephonyEvents
from app.core.channel import ChannelClosed, DuplexChannel
from app.core.diagnostics import DiagnosticLog, LogCategory
from app.telephony.media_base import TelephonyEventType


class MediaStreamLeg:
    """Telephony leg over a media-stream channel."""

    name = "telephony"

    def __init__(self, channel: DuplexChannel, diagnostics: DiagnosticLog) -> None:
        """Initialize the leg.

        Args:
            channel: Accepted duplex channel from the telephony gateway
            diagnostics: Shared diagnostic log
        """
        self._channel = channel
        self._diagnostics = diagnostics
        self._closed = False

        # Stats
        self._messages_received = 0
        self._frames_sent = 0
        self._malformed = 0

        self._logger = structlog.get_logger(__name__)

    @property
    def writable(self) -> bool:
        return not self._closed and self._channel.open

    @property
    def frames_sent(self) -> int:
        return self._frames_sent

    async def send_audio(self, payload: str, stream_sid: str) -> None:
        """Send one AI audio chunk to the caller.

        Raises:
            ChannelClosed: If the channel closed underneath us
        """
        message = translator.telephony_media(payload, stream_sid)
        await self._channel.send_text(translator.encode(message))
        self._frames_sent += 1

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._channel.close()
        self._logger.info(
            "Telephony leg closed",
            messages_received=self._messages_received,
            frames_sent=self._frames_sent,
        )

    async def run(self, handler: TelephonyEvents) -> None:
        """Receive loop. Ends on stop, channel close or transport error."""
        self._logger.info("Telephony leg receive loop started")
        failure: Optional[BaseException] = None

        try:
            while True:
                try:
                    raw = await self._channel.receive_text()
                except ChannelClosed as e:
                    self._logger.info("Telephony channel ended", reason=str(e))
                    break

                self._messages_received += 1
                if not await self._dispatch(raw, handler):
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("Telephony leg transport error", error=str(e), exc_info=True)
            failure = e

        self._closed = True
        try:
            await self._channel.close()
        except Exception as e:
            self._logger.warning("Error closing telephony channel", error=str(e))

        if failure is not None:
            await handler.on_leg_error(self, failure)
        else:
            await handler.on_leg_closed(self)

    async def _dispatch(self, raw: str, handler: TelephonyEvents) -> bool:
        """Handle one inbound message. Returns False once the stream stopped."""
        try:
            event = translator.parse_telephony_event(raw)
        except translator.MalformedMessageError as e:
            self._malformed += 1
            self._diagnostics.append(
                LogCategory.ERROR,
                "Malformed telephony message dropped",
                {"error": str(e), "preview": raw[:80]},
            )
            return True

        if event is None:
            self._logger.debug("Ignoring unknown telephony event", preview=raw[:80])
            return True

        if event.type is TelephonyEventType.MEDIA:
            await handler.on_caller_audio(event.frame)

        elif event.type is TelephonyEventType.START:
            await handler.on_stream_started(event.stream_sid, event.data)

        elif event.type is TelephonyEventType.STOP:
            self._diagnostics.append(
                LogCategory.TELEPHONY,
                "Telephony stream stopped",
                {"stream_sid": event.stream_sid},
            )
            return False

        elif event.type is TelephonyEventType.DTMF:
            self._logger.info("DTMF received", digit=event.data.get("digit"))

        else:
            # connected / mark: synchronization only
            self._logger.debug("Telephony event ignored", type=event.type.value)

        return True
