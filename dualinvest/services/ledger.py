"""Position ledger: durable hedge state keyed by exchange position id.

The ledger is a single JSON object on disk. Every change rewrites the whole
file through a temp file in the same directory followed by `os.replace`, so a
crash mid-write leaves either the old or the new file, never a torn one.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from dualinvest.errors import LedgerError
from dualinvest.schemas.hedge import HedgeRecord, HedgeStatus
from dualinvest.schemas.ledger import LedgerEntry
from dualinvest.schemas.market import Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivePosition:
    """An exchange-reported position with its hedge record attached."""
    position: Position
    record: HedgeRecord

    @property
    def id(self) -> str:
        return self.position.id

    @property
    def hedge_status(self) -> HedgeStatus:
        return self.record.hedge_status


class PositionLedger:
    """Single-writer store of `LedgerEntry` objects backed by a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._entries: dict[str, LedgerEntry] = self._load()

    def _load(self) -> dict[str, LedgerEntry]:
        if not self.path.exists():
            logger.info(f"Ledger: no file at {self.path}, starting empty")
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            raw = json.loads(text)
            return {str(pid): LedgerEntry.model_validate(entry) for pid, entry in raw.items()}
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise LedgerError(f"Ledger file {self.path} is unreadable: {e}") from e

    def _commit(self, entries: dict[str, LedgerEntry]):
        """Write `entries` to disk, then make them the in-memory state."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            pid: entry.model_dump(mode="json", by_alias=True)
            for pid, entry in entries.items()
        }
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".ledger_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._entries = entries

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def entries(self) -> dict[str, LedgerEntry]:
        return dict(self._entries)

    def get_entry(self, position_id: str) -> LedgerEntry | None:
        return self._entries.get(str(position_id))

    def get_record(self, position_id: str) -> HedgeRecord:
        """Hedge record of an open position; a fresh record for unknown or closed ids."""
        entry = self._entries.get(str(position_id))
        if entry is None or entry.is_closed:
            return HedgeRecord()
        return entry.record()

    def get_hedge_status(self, position_id: str) -> HedgeStatus:
        return self.get_record(position_id).hedge_status

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reconcile(self, positions: list[Position], now: datetime) -> list[ActivePosition]:
        """Attach stored hedge records to the exchange's position list.

        Reported positions are upserted. Stored positions the exchange no
        longer reports are marked closed but kept as history.
        """
        entries = dict(self._entries)
        active: list[ActivePosition] = []
        reported: set[str] = set()

        for position in positions:
            if position.id in reported:
                continue
            reported.add(position.id)

            entry = entries.get(position.id)
            if entry is not None and not entry.is_closed:
                record = entry.record()
                created_at = entry.created_at
            else:
                if entry is not None:
                    logger.info(f"Ledger: position id {position.id} reused, discarding closed history")
                record = HedgeRecord()
                created_at = now

            entries[position.id] = LedgerEntry.from_position(position, record, created_at, now)
            active.append(ActivePosition(position=position, record=record))

        for pid, entry in list(entries.items()):
            if pid not in reported and not entry.is_closed:
                logger.info(
                    f"Ledger: position {pid} ({entry.symbol}) no longer reported, "
                    f"marking closed with hedge status {entry.hedge_status.value}"
                )
                entries[pid] = entry.model_copy(update={"closed_at": now, "last_updated": now})

        self._commit(entries)
        return active

    def persist(self, position: Position, record: HedgeRecord, now: datetime):
        """Upsert the entry for `position` with `record` and write atomically."""
        entry = self._entries.get(position.id)
        created_at = entry.created_at if entry is not None and not entry.is_closed else now
        entries = dict(self._entries)
        entries[position.id] = LedgerEntry.from_position(position, record, created_at, now)
        self._commit(entries)

    def prune(self, older_than: datetime) -> int:
        """Delete closed entries whose close time is before `older_than`."""
        stale = [
            pid for pid, entry in self._entries.items()
            if entry.closed_at is not None and entry.closed_at < older_than
        ]
        if stale:
            self._commit({pid: e for pid, e in self._entries.items() if pid not in stale})
            logger.info(f"Ledger: pruned {len(stale)} closed entries")
        return len(stale)
