"""Base types for the telephony media-stream leg."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TelephonyEventType(Enum):
    """Inbound media-stream event kinds."""

    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    DTMF = "dtmf"
    STOP = "stop"


@dataclass(frozen=True)
class AudioFrame:
    """Opaque, already-encoded audio chunk (base64 G.711 mu-law).

    The bridge never decodes the payload; it is only re-wrapped.
    """

    payload: str
    timestamp: int = 0


@dataclass
class TelephonyEvent:
    """Parsed inbound media-stream event."""

    type: TelephonyEventType
    stream_sid: Optional[str] = None
    frame: Optional[AudioFrame] = None
    data: Dict[str, Any] = field(default_factory=dict)
