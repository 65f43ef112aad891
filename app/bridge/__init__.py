"""Call session bridge between the telephony and AI legs.

This module provides the bridging layer between the telephony media stream
and the realtime voice AI backend:
- CallSessionBridge: per-call orchestrator and teardown owner
- CallSession: per-call state (stream id, timestamps, counters)
- DropIfNotWritable: frame admission policy for both relay directions
"""

__all__ = [
    "CallSession",
    "CallSessionBridge",
    "DropIfNotWritable",
    "SessionState",
]

from app.bridge.call_session import CallSession, CallSessionBridge, DropIfNotWritable, SessionState
