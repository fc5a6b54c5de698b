"""CycleLog model: one row per scheduler-triggered cycle."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class CycleLog(SQLModel, table=True):
    __tablename__ = "cycle_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    status: str  # "success", "error", "skipped", "timeout", "stopped"
    action: str | None = None  # "executed", "cycle_skipped_overlap", "stop_condition", ...
    active_positions: int | None = None
    hedged_positions: int | None = None
    candidates: int | None = None
    subscriptions: int | None = None
    hedges: int | None = None
    duration_seconds: float | None = None
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
