"""Tick cadences for the engine's maintenance passes.

The engine runs conversation cleanup every tick and the heavier memory passes
on multiples of a tick interval. ``MaintenanceCadence`` bundles those
intervals so a run can retune them without touching the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from meadowloop.config import MemorySettings


@dataclass(frozen=True)
class TickInterval:
    """Represents an ``every N ticks`` cadence with an optional offset."""

    every: int = 1
    offset: int = 0

    def is_due(self, *, tick: int, last_run_tick: Optional[int] = None) -> bool:
        """Return ``True`` when the cadence fires on this tick."""

        if self.every <= 0:
            return False

        if last_run_tick is not None and tick <= last_run_tick:
            return False

        return ((tick - self.offset) % self.every) == 0


@dataclass(frozen=True)
class MaintenanceCadence:
    """When each maintenance pass runs, in ticks."""

    conversation_cleanup: TickInterval = field(default_factory=TickInterval)
    memory_sweep: TickInterval = field(default_factory=lambda: TickInterval(every=10))
    wipe_check: TickInterval = field(default_factory=lambda: TickInterval(every=100))
    consolidation: Optional[TickInterval] = None

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> "MaintenanceCadence":
        return cls(
            memory_sweep=TickInterval(every=settings.dedup_every),
            wipe_check=TickInterval(every=settings.wipe_check_every),
            consolidation=(
                TickInterval(every=settings.consolidation_every)
                if settings.auto_consolidation
                else None
            ),
        )


__all__ = ["MaintenanceCadence", "TickInterval"]
