"""JSONL audit journal for risk decisions, executions and emergency events."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

_ALLOWED_EVENT_TYPES = {
    "feed_start",
    "risk_decision",
    "observation",
    "queue",
    "execution",
    "position",
    "monitor",
    "emergency_exit",
    "reconciliation_required",
    "corruption",
    "feed_end",
    "error",
}


class JournalStore:
    """Append-only JSONL event store. Every record carries the owning user id."""

    def __init__(self, journal_dir: Path, user_id: str = "local") -> None:
        self._journal_dir = journal_dir
        self._user_id = user_id
        self._journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def user_id(self) -> str:
        return self._user_id

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        """Append one event line to daily JSONL file."""
        if event_type not in _ALLOWED_EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        record = {
            "timestamp": now.isoformat(),
            "user_id": self._user_id,
            "event_type": event_type,
            "payload": payload,
        }
        file_path = self._file_path_for_day(now.date())
        with file_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")

    def load_recent(self, limit: int, event_type: str | None = None) -> list[dict[str, Any]]:
        """Load recent events from the most recent journal files."""
        if limit <= 0:
            return []

        rows: list[dict[str, Any]] = []
        files = sorted(self._journal_dir.glob("*.jsonl"), reverse=True)
        for file in files:
            lines = file.read_text(encoding="utf-8").splitlines()
            for line in reversed(lines):
                if not line.strip():
                    continue
                row = json.loads(line)
                if event_type is not None and row.get("event_type") != event_type:
                    continue
                rows.append(row)
                if len(rows) >= limit:
                    return list(reversed(rows))
        return list(reversed(rows))

    def _file_path_for_day(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"
