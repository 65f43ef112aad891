"""Mapping between media-stream events and realtime backend events.

Pure functions only: parse inbound JSON into normalized events, and build
outbound envelopes. Keeps JSON shapes and event-name variants out of the
bridge logic.
"""

import json
import time
from typing import Any, Dict, Optional, Union

from app.ai.duplex_base import AiEvent, AiEventType, SessionConfig
from app.telephony.media_base import AudioFrame, TelephonyEvent, TelephonyEventType


class MalformedMessageError(ValueError):
    """Inbound message could not be parsed into a known envelope."""


# Wire names per semantic event. Older and newer backend releases use
# different names for the same event.
AI_EVENT_NAMES: Dict[str, AiEventType] = {
    "session.created": AiEventType.SESSION_CREATED,
    "session.updated": AiEventType.SESSION_UPDATED,
    "response.created": AiEventType.RESPONSE_CREATED,
    "response.audio.delta": AiEventType.AUDIO_DELTA,
    "response.output_audio.delta": AiEventType.AUDIO_DELTA,
    "response.audio_transcript.done": AiEventType.TRANSCRIPT_FINAL,
    "response.output_audio_transcript.done": AiEventType.TRANSCRIPT_FINAL,
    "response.done": AiEventType.RESPONSE_DONE,
    "error": AiEventType.ERROR,
}


def _load_object(raw: Union[str, bytes]) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(message, dict):
        raise MalformedMessageError(
            f"Expected a JSON object, got {type(message).__name__}"
        )
    return message


def _parse_timestamp(value: Any) -> int:
    # Media timestamps arrive as strings of milliseconds
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid media timestamp: {value!r}") from e


def parse_telephony_event(raw: Union[str, bytes]) -> Optional[TelephonyEvent]:
    """Parse one inbound media-stream frame.

    Returns:
        The parsed event, or None for event kinds the bridge does not know

    Raises:
        MalformedMessageError: If the envelope is unparseable or incomplete
    """
    message = _load_object(raw)

    name = message.get("event")
    if not isinstance(name, str):
        raise MalformedMessageError("Missing 'event' field")

    try:
        event_type = TelephonyEventType(name)
    except ValueError:
        return None

    if event_type is TelephonyEventType.START:
        start = message.get("start")
        start = start if isinstance(start, dict) else {}
        stream_sid = start.get("streamSid") or message.get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            raise MalformedMessageError("start event without streamSid")
        return TelephonyEvent(type=event_type, stream_sid=stream_sid, data=start)

    if event_type is TelephonyEventType.MEDIA:
        media = message.get("media")
        if not isinstance(media, dict):
            raise MalformedMessageError("media event without media object")
        payload = media.get("payload")
        if not isinstance(payload, str):
            raise MalformedMessageError("media event without payload")
        frame = AudioFrame(payload=payload, timestamp=_parse_timestamp(media.get("timestamp")))
        return TelephonyEvent(
            type=event_type,
            stream_sid=message.get("streamSid"),
            frame=frame,
        )

    body = message.get(name)
    return TelephonyEvent(
        type=event_type,
        stream_sid=message.get("streamSid"),
        data=body if isinstance(body, dict) else {},
    )


def telephony_media(frame_payload: str, stream_sid: str) -> Dict[str, Any]:
    """Outbound media event addressed to one stream."""
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": frame_payload},
    }


def parse_ai_event(raw: Union[str, bytes]) -> AiEvent:
    """Parse one inbound backend frame.

    Raises:
        MalformedMessageError: If the frame is not a typed JSON object
    """
    message = _load_object(raw)

    wire_type = message.get("type")
    if not isinstance(wire_type, str) or not wire_type:
        raise MalformedMessageError("Missing 'type' field")

    return AiEvent(
        type=AI_EVENT_NAMES.get(wire_type, AiEventType.OTHER),
        wire_type=wire_type,
        data=message,
        timestamp=time.time(),
    )


def ai_audio_append(frame_payload: str) -> Dict[str, Any]:
    """Outbound input_audio_buffer.append carrying caller audio."""
    return {"type": "input_audio_buffer.append", "audio": frame_payload}


def session_update(session: SessionConfig) -> Dict[str, Any]:
    """Outbound session.update configuring the backend session."""
    return {"type": "session.update", "session": session.to_session()}


def response_create(session: SessionConfig, instructions: Optional[str] = None) -> Dict[str, Any]:
    """Outbound response.create asking the backend to speak now."""
    response: Dict[str, Any] = {"modalities": list(session.modalities)}
    if instructions:
        response["instructions"] = instructions
    return {"type": "response.create", "response": response}


def encode(message: Dict[str, Any]) -> str:
    """Serialize an outbound envelope."""
    return json.dumps(message, separators=(",", ":"))
