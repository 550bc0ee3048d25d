"""Bounded in-memory log of control-plane calls for the debug view."""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

from vyos_dashboard.core.secrets import scrub_value

DebugEventType = Literal["request", "response", "error", "info", "warning"]
DEFAULT_MAX_EVENTS = 200


class DebugSink(Protocol):
    """Anything the gateway can report request events to."""

    def record(
        self,
        type: DebugEventType,
        message: str,
        *,
        endpoint: str = "",
        method: str = "",
        status: int | None = None,
        payload: Any = None,
        duration_ms: float | None = None,
    ) -> Any:
        ...


@dataclass(slots=True)
class DebugEvent:
    """One entry of the debug log."""

    id: str
    type: DebugEventType
    timestamp: str
    message: str
    endpoint: str = ""
    method: str = ""
    status: int | None = None
    payload: Any = None
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "endpoint": self.endpoint,
            "method": self.method,
            "status": self.status,
            "message": self.message,
            "payload": self.payload,
            "duration_ms": self.duration_ms,
        }


class DebugLog:
    """Keep the most recent debug events, newest first.

    Payloads are sanitized when recorded, so credential fields never reach
    the buffer (or the persisted snapshot built from it).
    """

    def __init__(self, *, max_events: int = DEFAULT_MAX_EVENTS, recording: bool = True) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be greater than zero.")
        self.max_events = max_events
        self.recording = recording
        self._events: deque[DebugEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record(
        self,
        type: DebugEventType,
        message: str,
        *,
        endpoint: str = "",
        method: str = "",
        status: int | None = None,
        payload: Any = None,
        duration_ms: float | None = None,
    ) -> DebugEvent | None:
        if not self.recording:
            return None

        event = DebugEvent(
            id=uuid.uuid4().hex[:12],
            type=type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            message=message,
            endpoint=endpoint,
            method=method,
            status=status,
            payload=scrub_value(payload, None),
            duration_ms=round(duration_ms, 1) if duration_ms is not None else None,
        )
        with self._lock:
            self._events.appendleft(event)
        return event

    def events(self) -> list[DebugEvent]:
        with self._lock:
            return list(self._events)

    def to_list(self) -> list[dict[str, object]]:
        return [event.to_dict() for event in self.events()]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def toggle_recording(self) -> bool:
        self.recording = not self.recording
        return self.recording

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
