"""Telephony audio and bridge constants."""


class AudioConstants:
    """Audio format constants shared by the telephony and AI legs."""

    # 8kHz G.711 mu-law, relayed opaquely and never transcoded
    REALTIME_AUDIO_FORMAT = "g711_ulaw"

    # Logging intervals
    LOG_INTERVAL_FRAMES = 50  # Log every 50 frames (1 second @ 20ms)


class BridgeConstants:
    """Session-level defaults."""

    DIAGNOSTIC_LOG_CAPACITY = 100

    # Upper bound on waiting for session.updated before greeting anyway
    HANDSHAKE_ACK_TIMEOUT_MS = 500

    # Backend WebSocket open timeout
    AI_CONNECT_TIMEOUT_S = 10.0
