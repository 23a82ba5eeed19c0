"""Per-user position store persisted as a local JSON state file."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sniper_engine.errors import PositionStoreError
from sniper_engine.types import Position, PositionStatus

_SAFE_USER = re.compile(r"[^A-Za-z0-9_.-]")


class PositionStore:
    """CRUD over one user's positions.

    The whole table is rewritten on every mutation; records are small and
    writes happen at most once per trade.
    """

    def __init__(self, journal_dir: Path, user_id: str) -> None:
        self._user_id = user_id
        journal_dir.mkdir(parents=True, exist_ok=True)
        self._state_file = journal_dir / f"positions_{_SAFE_USER.sub('_', user_id)}.json"
        self._positions = self._load()

    @property
    def user_id(self) -> str:
        return self._user_id

    def create(self, position: Position) -> Position:
        if position.user_id != self._user_id:
            raise PositionStoreError("position_user_mismatch")
        if position.id in self._positions:
            raise PositionStoreError(f"position_exists: {position.id}")
        self._positions[position.id] = position
        self._persist()
        return position

    def get(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    def list(self, status: PositionStatus | None = None) -> list[Position]:
        rows = list(self._positions.values())
        if status is not None:
            rows = [p for p in rows if p.status == status]
        return sorted(rows, key=lambda p: p.opened_at)

    def find_open(self, token_address: str) -> Position | None:
        for position in self._positions.values():
            if position.token_address == token_address and position.status != PositionStatus.CLOSED:
                return position
        return None

    def mark_open(self, position_id: str) -> Position:
        position = self._require(position_id)
        if position.status != PositionStatus.PENDING:
            raise PositionStoreError(f"position_not_pending: {position_id}")
        position.status = PositionStatus.OPEN
        self._persist()
        return position

    def close(
        self,
        position_id: str,
        *,
        exit_price: float | None,
        exit_reason: str,
        exit_tx: str | None,
        integrity_flags: list[str] | None = None,
    ) -> Position:
        position = self._require(position_id)
        if position.status == PositionStatus.CLOSED:
            raise PositionStoreError(f"position_already_closed: {position_id}")
        position.status = PositionStatus.CLOSED
        position.exit_price = exit_price
        position.exit_reason = exit_reason
        position.exit_tx = exit_tx
        position.closed_at = datetime.now(timezone.utc).isoformat()
        for flag in integrity_flags or []:
            if flag not in position.integrity_flags:
                position.integrity_flags.append(flag)
        self._persist()
        return position

    def flag_reconciliation(self, position_id: str, flag: str) -> Position:
        position = self._require(position_id)
        position.needs_reconciliation = True
        if flag not in position.integrity_flags:
            position.integrity_flags.append(flag)
        self._persist()
        return position

    def update_metadata(self, position_id: str, *, symbol: str, name: str) -> Position:
        position = self._require(position_id)
        position.token_symbol = symbol
        position.token_name = name
        self._persist()
        return position

    def _require(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionStoreError(f"position_not_found: {position_id}")
        return position

    def _load(self) -> dict[str, Position]:
        if not self._state_file.exists():
            return {}
        try:
            raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PositionStoreError(f"position_state_unreadable: {exc}") from exc
        known = {f.name for f in fields(Position)}
        positions: dict[str, Position] = {}
        for row in raw.get("positions", []):
            payload: dict[str, Any] = {k: v for k, v in row.items() if k in known}
            payload["status"] = PositionStatus(payload.get("status", PositionStatus.OPEN.value))
            position = Position(**payload)
            positions[position.id] = position
        return positions

    def _persist(self) -> None:
        payload = {
            "user_id": self._user_id,
            "positions": [
                {**asdict(p), "status": p.status.value} for p in self._positions.values()
            ],
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        try:
            self._state_file.write_text(serialized, encoding="utf-8")
        except OSError as exc:
            raise PositionStoreError(f"position_state_write_failed: {exc}") from exc
