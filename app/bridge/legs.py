"""Leg and handler interfaces between the bridge and its two adapters.

The bridge only talks to legs through these protocols, and each leg only
reports back through its handler protocol. Tests drive the bridge with
fake legs implementing the same surface.
"""

from typing import Any, Dict, Protocol, runtime_checkable

from app.ai.duplex_base import AiEvent
from app.telephony.media_base import AudioFrame


@runtime_checkable
class Leg(Protocol):
    """Capabilities shared by both legs."""

    name: str

    @property
    def writable(self) -> bool:
        """True while outbound frames can be sent."""
        ...

    async def close(self) -> None:
        """Close the leg. Closing an already-closed leg is a no-op."""
        ...


class LegEvents(Protocol):
    """Lifecycle callbacks every leg reports."""

    async def on_leg_closed(self, leg: Leg) -> None:
        """The leg's channel ended (peer close, stop event or local close)."""
        ...

    async def on_leg_error(self, leg: Leg, error: BaseException) -> None:
        """The leg hit a transport error and cannot continue."""
        ...


class TelephonyEvents(LegEvents, Protocol):
    """Callbacks raised by the telephony leg."""

    async def on_stream_started(self, stream_sid: str, metadata: Dict[str, Any]) -> None:
        ...

    async def on_caller_audio(self, frame: AudioFrame) -> None:
        ...


class AiEvents(LegEvents, Protocol):
    """Callbacks raised by the AI leg."""

    async def on_ai_opened(self) -> None:
        """Backend channel open and session configuration dispatched."""
        ...

    async def on_ai_audio(self, payload: str) -> None:
        ...

    async def on_ai_transcript(self, text: str) -> None:
        ...

    async def on_ai_session_state(self, event: AiEvent) -> None:
        """session.created, session.updated or response.created."""
        ...

    async def on_ai_response_done(self, event: AiEvent) -> None:
        ...

    async def on_ai_error(self, event: AiEvent) -> None:
        """Backend-reported error event. Not fatal."""
        ...


@runtime_checkable
class TelephonyLeg(Leg, Protocol):
    """Telephony-facing leg."""

    async def send_audio(self, payload: str, stream_sid: str) -> None:
        ...

    async def run(self, handler: TelephonyEvents) -> None:
        """Receive loop; returns after reporting on_leg_closed or on_leg_error."""
        ...


@runtime_checkable
class AiLeg(Leg, Protocol):
    """AI-backend-facing leg."""

    async def send_audio(self, payload: str) -> None:
        ...

    async def run(self, handler: AiEvents) -> None:
        """Connect, handshake and receive; returns after reporting close or error."""
        ...
