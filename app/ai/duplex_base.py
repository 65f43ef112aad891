"""Base types for the realtime AI backend leg."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from typing import Any, Dict, Optional, Tuple

from app.core.constants import AudioConstants


class AiEventType(Enum):
    """Backend events the bridge reacts to.

    Several wire names can map to one type (see the translator).
    """

    SESSION_CREATED = auto()
    SESSION_UPDATED = auto()
    RESPONSE_CREATED = auto()
    AUDIO_DELTA = auto()
    TRANSCRIPT_FINAL = auto()
    RESPONSE_DONE = auto()
    ERROR = auto()

    # Anything else: logged at debug and otherwise ignored
    OTHER = auto()


@dataclass
class AiEvent:
    """Normalized backend event."""

    type: AiEventType
    wire_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def _body(self, key: str) -> Dict[str, Any]:
        body = self.data.get(key)
        return body if isinstance(body, dict) else {}

    @property
    def audio(self) -> Optional[str]:
        """Base64 audio payload of an AUDIO_DELTA event."""
        delta = self.data.get("delta")
        return delta if isinstance(delta, str) and delta else None

    @property
    def transcript(self) -> Optional[str]:
        """Final transcript text of a TRANSCRIPT_FINAL event."""
        text = self.data.get("transcript")
        return text if isinstance(text, str) else None

    @property
    def session(self) -> Dict[str, Any]:
        """Session body of session.created / session.updated."""
        return self._body("session")

    @property
    def response(self) -> Dict[str, Any]:
        """Response body of response.created / response.done."""
        return self._body("response")

    @property
    def error(self) -> Dict[str, Any]:
        """Error body of an ERROR event."""
        return self._body("error")


class HandshakeState(IntEnum):
    """AI leg handshake progress. Only ever moves forward."""

    CONNECTING = 0
    OPENED = 1
    CONFIGURED = 2  # session.update sent
    GREETED = 3  # greeting response.create sent
    ACTIVE = 4  # session.updated acknowledgment observed


# Omitting "text" silently suppresses audio output on the backend
REQUIRED_MODALITIES = frozenset({"text", "audio"})


@dataclass
class SessionConfig:
    """Session parameters sent in session.update."""

    instructions: str
    voice: str = "shimmer"
    temperature: float = 0.8
    input_audio_format: str = AudioConstants.REALTIME_AUDIO_FORMAT
    output_audio_format: str = AudioConstants.REALTIME_AUDIO_FORMAT
    turn_detection: str = "server_vad"
    modalities: Tuple[str, ...] = ("text", "audio")

    def __post_init__(self) -> None:
        missing = REQUIRED_MODALITIES.difference(self.modalities)
        if missing:
            raise ValueError(
                f"Session modalities must include text and audio, missing: {sorted(missing)}"
            )
        if not self.instructions:
            raise ValueError("Session instructions must not be empty")

    def to_session(self) -> Dict[str, Any]:
        """Body of the session.update "session" object."""
        return {
            "turn_detection": {"type": self.turn_detection},
            "input_audio_format": self.input_audio_format,
            "output_audio_format": self.output_audio_format,
            "voice": self.voice,
            "instructions": self.instructions,
            "modalities": list(self.modalities),
            "temperature": self.temperature,
        }
