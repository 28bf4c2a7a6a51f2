"""Grading scale resolution: mark -> grade label.

One pure function serves the optimistic preview while a teacher types,
the store when it persists a result, and the summaries, so the grade a
teacher sees before saving is always the grade that gets stored.
"""

import enum
import math
from collections.abc import Iterable

from results_engine.schemas.exam import GradeBandSchema

ABSENT_GRADE = "TH"
OPTED_OUT_GRADE = "N/A"


class CellSentinel(str, enum.Enum):
    """Non-numeric cell states."""

    ABSENT = ABSENT_GRADE
    OPTED_OUT = OPTED_OUT_GRADE


class GradingScale:
    """Ordered (label, minimum mark) bands, highest threshold first."""

    def __init__(self, bands: Iterable[GradeBandSchema], is_default: bool = False):
        self.bands = sorted(bands, key=lambda b: b.min_mark, reverse=True)
        if not self.bands:
            raise ValueError("A grading scale needs at least one band")
        self.is_default = is_default

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[float, str]], is_default: bool = False) -> "GradingScale":
        return cls(
            [GradeBandSchema(label=label, min_mark=threshold) for threshold, label in pairs],
            is_default=is_default,
        )

    @property
    def labels(self) -> list[str]:
        return [band.label for band in self.bands]

    def lookup(self, mark: float) -> str:
        for band in self.bands:
            if band.min_mark <= mark:
                return band.label
        # Below every band: lowest grade
        return self.bands[-1].label

    def __repr__(self) -> str:
        return f"<GradingScale({', '.join(f'{b.min_mark:g}->{b.label}' for b in self.bands)})>"


DEFAULT_SCALE = GradingScale.from_pairs(
    [
        (90, "A+"),
        (80, "A"),
        (70, "A-"),
        (65, "B+"),
        (60, "B"),
        (55, "C+"),
        (50, "C"),
        (45, "D"),
        (40, "E"),
        (0, "G"),
    ],
    is_default=True,
)


def scale_or_default(bands: Iterable[GradeBandSchema] | None) -> GradingScale:
    """Build the exam's scale; no bands configured means the built-in scale."""
    bands = list(bands or [])
    if not bands:
        return DEFAULT_SCALE
    return GradingScale(bands)


def resolve_grade(
    mark: float | CellSentinel | None,
    scale: GradingScale | None = None,
) -> str | None:
    """Grade a cell.

    Absent and opted-out cells bypass the scale. ``None`` (nothing entered)
    has no grade.
    """
    if isinstance(mark, CellSentinel):
        return mark.value
    if mark is None or not math.isfinite(mark):
        return None
    return (scale or DEFAULT_SCALE).lookup(mark)


def grade_rank(label: str, scale: GradingScale | None = None) -> int | None:
    """Position of a label in the scale, 0 for the best grade."""
    labels = (scale or DEFAULT_SCALE).labels
    try:
        return labels.index(label)
    except ValueError:
        return None


def cell_grade(
    mark: float | None,
    is_absent: bool,
    opted_out: bool,
    scale: GradingScale | None = None,
) -> str | None:
    """Grade of a cell with N/A > TH > mark precedence."""
    if opted_out:
        return resolve_grade(CellSentinel.OPTED_OUT, scale)
    if is_absent:
        return resolve_grade(CellSentinel.ABSENT, scale)
    return resolve_grade(mark, scale)
