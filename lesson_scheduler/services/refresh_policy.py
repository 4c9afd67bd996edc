"""Client-side refresh cadence for a student's view of free slots."""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable

from lesson_scheduler.core import config
from lesson_scheduler.services.slot_generator import Slot


@dataclass(frozen=True)
class RefreshPolicy:
    interval_seconds: int = 10
    debounce_seconds: int = 2
    last_refresh_at: datetime | None = None

    @classmethod
    def from_config(cls) -> 'RefreshPolicy':
        return cls(
            interval_seconds=config.REFRESH_INTERVAL_SECONDS,
            debounce_seconds=config.REFRESH_DEBOUNCE_SECONDS,
        )

    def should_refresh(self, now: datetime, force: bool = False) -> bool:
        """
        Periodic refreshes run at most once per ``interval_seconds``. A forced
        refresh (user pressed refresh) skips the interval but never the debounce.
        """
        if self.last_refresh_at is None:
            return True
        elapsed = now - self.last_refresh_at
        if elapsed < timedelta(seconds=self.debounce_seconds):
            return False
        return force or elapsed >= timedelta(seconds=self.interval_seconds)

    def mark_refreshed(self, now: datetime) -> 'RefreshPolicy':
        return replace(self, last_refresh_at=now)

    def next_refresh_at(self, now: datetime) -> datetime:
        if self.last_refresh_at is None:
            return now
        return self.last_refresh_at + timedelta(seconds=self.interval_seconds)


def reconcile_selection(selected_slot_id: str | None, slots: Iterable[Slot]) -> Slot | None:
    """The freshly fetched slot matching a previous selection, or None if it was taken."""
    if selected_slot_id is None:
        return None
    return next((slot for slot in slots if slot.id == selected_slot_id), None)
