"""JSONL event log for conversations and memory operations."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    slot_id: str | None = None
    role: str | None = None
    duration_ms: float | None = None
    stopped_reason: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {}}


class JSONLLogger:
    """Writes structured events, one JSON object per line."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".mneme" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        slot_id: Any = None,
        role: str | None = None,
        duration_ms: float | None = None,
        stopped_reason: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            slot_id=None if slot_id is None else str(slot_id),
            role=role,
            duration_ms=duration_ms,
            stopped_reason=stopped_reason,
            error=error,
            extra={k: v for k, v in extra.items() if v is not None},
        )
        self._write(entry)

    def log_message(self, user_id: str, slot_id: Any, role: str, length: int) -> None:
        self.log("message", user_id=user_id, slot_id=slot_id, role=role, length=length)

    def log_completion(
        self,
        user_id: str,
        stopped_reason: str,
        *,
        turns: int,
        duration_ms: float | None = None,
        evicted: int = 0,
    ) -> None:
        """Log the end of a completion."""
        self.log(
            "completion",
            user_id=user_id,
            stopped_reason=stopped_reason,
            duration_ms=duration_ms,
            turns=turns,
            evicted=evicted,
        )

    def log_navigation(
        self,
        user_id: str,
        slot_id: Any,
        action: str,
        *,
        cursor: int | None = None,
        error: str | None = None,
    ) -> None:
        self.log(
            "navigation",
            user_id=user_id,
            slot_id=slot_id,
            error=error,
            action=action,
            cursor=cursor,
        )

    def log_memory(
        self,
        user_id: str,
        action: str,
        *,
        count: int | None = None,
        error: str | None = None,
    ) -> None:
        """Log a long-term memory operation (recall, store, seed)."""
        self.log("memory", user_id=user_id, error=error, action=action, count=count)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
