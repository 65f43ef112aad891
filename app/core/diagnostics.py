"""Bounded diagnostic log shared by all call sessions.

Entries are kept newest first in a fixed-capacity deque; once capacity is
reached, each new entry evicts the oldest one. The store is owned by the
application and injected into every bridge and leg.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog

from app.core.constants import BridgeConstants


class LogCategory(str, Enum):
    """Diagnostic entry categories."""

    SESSION = "session"
    TELEPHONY = "telephony"
    AI = "ai"
    AUDIO = "audio"
    TRANSCRIPT = "transcript"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """Immutable diagnostic record."""

    timestamp: datetime
    category: LogCategory
    message: str
    detail: Optional[Mapping[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "message": self.message,
            "detail": dict(self.detail) if self.detail is not None else None,
        }


class DiagnosticLog:
    """Append-only ring of LogEntry objects, newest first.

    All access happens on the event loop thread, so no lock is taken.
    """

    def __init__(self, capacity: int = BridgeConstants.DIAGNOSTIC_LOG_CAPACITY) -> None:
        """Initialize the store.

        Args:
            capacity: Maximum number of retained entries

        Raises:
            ValueError: If capacity is <= 0
        """
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")

        self._capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._logger = structlog.get_logger(__name__)

    @property
    def capacity(self) -> int:
        """Maximum number of entries."""
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        category: LogCategory,
        message: str,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record an entry and mirror it to the process log.

        Never raises: a diagnostic write must not disturb a call.
        """
        try:
            frozen = MappingProxyType(dict(detail)) if detail else None
            entry = LogEntry(
                timestamp=datetime.now(timezone.utc),
                category=LogCategory(category),
                message=message,
                detail=frozen,
            )
        except (TypeError, ValueError) as e:
            self._logger.warning("Dropped invalid diagnostic entry", error=str(e))
            return

        # appendleft on a bounded deque drops from the right (oldest)
        self._entries.appendleft(entry)

        log = self._logger.error if entry.category is LogCategory.ERROR else self._logger.info
        log(message, category=entry.category.value, detail=dict(detail) if detail else None)

    def snapshot(self) -> Tuple[LogEntry, ...]:
        """Point-in-time copy of all entries, newest first."""
        return tuple(self._entries)

    def to_list(self) -> list[Dict[str, Any]]:
        """Snapshot as JSON-ready dictionaries."""
        return [entry.to_dict() for entry in self.snapshot()]
