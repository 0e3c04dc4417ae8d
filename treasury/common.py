"""Shared helpers for treasury runtime modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import uuid


@dataclass(frozen=True)
class TreasuryClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)


def new_record_id() -> str:
    """Opaque identifier for records, audit entries, and snapshots."""
    return str(uuid.uuid4())


def clean_text(value: object) -> str | None:
    """Strip free text and collapse blanks to ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
