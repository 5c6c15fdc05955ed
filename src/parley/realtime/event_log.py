"""JSONL capture of the protocol traffic of a realtime session.

Enabled with ``debug_event_logging``. Each session generation gets its own file
under ``<log dir>/events``; every line is one of ``start``, ``inbound``,
``outbound``, ``failure`` or ``closed``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any, Mapping

from ..utils import logging as logging_utils

__all__ = [
    "SessionEventLogger",
    "SessionEventLog",
]

LOGGER = logging.getLogger(__name__)

_MAX_DEPTH = 6


def _event_dir() -> Path:
    active = logging_utils.get_log_path()
    root = active.parent if active is not None else Path.home() / ".parley" / "logs"
    return root / "events"


def _jsonable(value: Any, depth: int = 0) -> Any:
    """Best-effort conversion of protocol payloads into JSON-compatible values."""

    if depth > _MAX_DEPTH:
        return repr(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item, depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item, depth + 1) for item in value]
    return repr(value)


@dataclass(slots=True)
class _NullSessionEventLog:
    """Stand-in used while logging is disabled or before a session starts."""

    path: Path | None = None

    def log_inbound(self, *_: Any, **__: Any) -> None:
        return

    def log_outbound(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return

    def close(self, *_: Any, **__: Any) -> None:
        return


class SessionEventLog:
    """Open JSONL file for one session generation. Writes stop after it is finalized."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._stream: IO[str] | None = path.open("w", encoding="utf-8")
        self._sequence = 0
        self._append("start", **context)

    @property
    def finalized(self) -> bool:
        return self._stream is None

    def log_inbound(self, payload: Any) -> None:
        self._append("inbound", payload=payload)

    def log_outbound(self, payload: Mapping[str, Any]) -> None:
        self._append("outbound", payload=dict(payload))

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        extra = {"details": dict(details)} if details else {}
        self._append("failure", status="failure", message=message, **extra)
        self._finalize()

    def close(self, *, reason: str = "stopped") -> None:
        self._append("closed", reason=reason)
        self._finalize()

    def _append(self, event: str, **fields: Any) -> None:
        if self._stream is None:
            return
        self._sequence += 1
        record = {"event": event, "seq": self._sequence, "timestamp": time.time()}
        record.update({key: _jsonable(value) for key, value in fields.items()})
        self._stream.write(json.dumps(record, ensure_ascii=False))
        self._stream.write("\n")
        self._stream.flush()

    def _finalize(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except OSError:  # pragma: no cover - filesystem dependent
            LOGGER.debug("Failed to close event log %s", self.path, exc_info=True)


class SessionEventLogger:
    """Hands out a :class:`SessionEventLog` per session when enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _event_dir()

    def start_session(
        self,
        *,
        generation: int,
        model: str,
        agent: str | None,
        metadata: Mapping[str, Any] | None = None,
    ) -> SessionEventLog | _NullSessionEventLog:
        if not self.enabled:
            return _NullSessionEventLog()
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        path = self._base_dir / f"session-{stamp}-g{generation}.jsonl"
        context = {"generation": generation, "model": model, "agent": agent, "metadata": dict(metadata or {})}
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            log = SessionEventLog(path, context=context)
        except OSError:
            LOGGER.warning("Could not open session event log at %s", path, exc_info=True)
            return _NullSessionEventLog()
        LOGGER.debug("Session event log started: %s", path)
        return log
