"""
Interval Table - stage to day-offset mapping.

The table is configuration, not behaviour: engine functions take it as a
parameter so spacing can be tuned without touching the algorithm.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from studytrack import config
from studytrack.constants import INTERVALS


@dataclass(frozen=True)
class IntervalTable:
    """
    Fixed ascending sequence of day offsets.

    offsets[stage - 1] is the wait after reaching `stage`.
    """
    offsets: tuple[int, ...] = INTERVALS

    def __post_init__(self):
        offsets = tuple(self.offsets)
        if not offsets:
            raise ValueError("Interval table must contain at least one offset")
        if any(o <= 0 for o in offsets):
            raise ValueError(f"Interval offsets must be positive: {offsets}")
        if any(b <= a for a, b in zip(offsets, offsets[1:])):
            raise ValueError(f"Interval offsets must be strictly ascending: {offsets}")
        object.__setattr__(self, "offsets", offsets)

    def __len__(self) -> int:
        return len(self.offsets)

    @property
    def final_stage(self) -> int:
        """Highest stage that still has a review scheduled."""
        return len(self.offsets)

    def offset_for_stage(self, stage: int) -> Optional[int]:
        """
        Day offset for a stage, or None when the stage is beyond the table.

        Stage 0 (never studied) also has no offset.
        """
        if 1 <= stage <= len(self.offsets):
            return self.offsets[stage - 1]
        return None

    def is_beyond(self, stage: int) -> bool:
        return stage > len(self.offsets)

    @classmethod
    def of(cls, offsets: Iterable[int]) -> "IntervalTable":
        return cls(tuple(offsets))

    @classmethod
    def from_env(cls) -> "IntervalTable":
        """Build the table from STUDYTRACK_INTERVALS."""
        return cls(config.get_interval_offsets())


DEFAULT_TABLE = IntervalTable()
