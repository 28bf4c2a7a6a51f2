"""Academic, conduct and weighted final score computation.

All arithmetic is done in full precision; only ``format_score`` rounds,
to one decimal place, for display.
"""

from collections.abc import Iterable, Mapping, Sequence

from results_engine.schemas.exam import (
    CONDUCT_DIMENSIONS,
    ConductCriterionSchema,
    ConductEntryRecord,
    ConductScores,
    RosterEntry,
)
from results_engine.schemas.session import (
    StudentWeightedScore,
    SubjectAverage,
    WeightedSummary,
)
from results_engine.services.completion import EMPTY_CELL, CellMap, has_mark, subjects_for_student
from results_engine.services.ledger import ExamLedger

PLACEHOLDER = "—"


def mean(values: Iterable[float]) -> float | None:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def format_score(value: float | None) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:.1f}"


def academic_average(marks: Iterable[float]) -> float | None:
    """Mean of numeric marks. TH and opted-out cells must not be passed in."""
    return mean(marks)


def normalize_conduct(
    scores: ConductScores,
    criteria: Mapping[str, ConductCriterionSchema] | None = None,
    default_max: float = 100,
) -> dict[str, float]:
    """Convert recorded raw dimension scores to 0-100 percentages."""
    criteria = criteria or {}
    normalized = {}
    for dim, raw in scores.as_dict().items():
        if raw is None:
            continue
        criterion = criteria.get(dim)
        maximum = criterion.effective_max(default_max) if criterion else default_max
        normalized[dim] = clamp(raw * 100 / maximum)
    return normalized


def conduct_average(
    scores: ConductScores | None,
    criteria: Mapping[str, ConductCriterionSchema] | None = None,
    default_max: float = 100,
) -> float | None:
    """Mean of the normalized dimensions; None when nothing is recorded."""
    if scores is None:
        return None
    return mean(normalize_conduct(scores, criteria, default_max).values())


def final_score(
    academic: float | None,
    conduct: float | None,
    weight: float | None,
) -> float | None:
    """Blend academic and conduct averages by the conduct weight (0-100).

    Without a weight or without conduct the final score is the academic
    average; without an academic average there is no final score.
    """
    if academic is None:
        return None
    if not weight or conduct is None:
        return clamp(academic)
    w = clamp(weight) / 100
    return clamp(academic * (1 - w) + conduct * w)


def conduct_summary(entries: Iterable[ConductEntryRecord]) -> ConductScores | None:
    """Collapse one student's conduct entries into a single set of scores.

    The override entry (no subject) supersedes per-subject entries;
    otherwise each dimension is averaged across the subject entries that
    recorded it.
    """
    entries = list(entries)
    if not entries:
        return None
    for entry in entries:
        if entry.subject_id is None and not entry.scores.is_empty():
            return entry.scores
    averaged = {
        dim: mean(
            getattr(entry.scores, dim)
            for entry in entries
            if entry.subject_id is not None and getattr(entry.scores, dim) is not None
        )
        for dim in CONDUCT_DIMENSIONS
    }
    scores = ConductScores(**averaged)
    return None if scores.is_empty() else scores


def student_marks(
    student: RosterEntry,
    subject_ids: Sequence[int],
    cells: CellMap,
    ledger: ExamLedger,
) -> list[float]:
    """Numeric marks of a student's subjects, skipping TH and opt-outs."""
    marks = []
    for subject_id in subject_ids:
        if ledger.is_opted_out(student.student_id, subject_id):
            continue
        cell = cells.get((student.student_id, subject_id), EMPTY_CELL)
        if cell.is_absent or not has_mark(cell):
            continue
        marks.append(cell.mark)
    return marks


def subject_class_averages(
    roster: Sequence[RosterEntry],
    subject_ids: Sequence[int],
    cells: CellMap,
    ledger: ExamLedger,
) -> dict[int, float | None]:
    """Per-subject mean across the roster; None when nobody has a mark."""
    averages = {}
    for subject_id in subject_ids:
        marks = []
        for student in roster:
            if ledger.is_opted_out(student.student_id, subject_id):
                continue
            cell = cells.get((student.student_id, subject_id), EMPTY_CELL)
            if cell.is_absent or not has_mark(cell):
                continue
            marks.append(cell.mark)
        averages[subject_id] = mean(marks)
    return averages


def summarize_weighted(
    roster: Sequence[RosterEntry],
    subject_ids: Sequence[int],
    cells: CellMap,
    ledger: ExamLedger,
    conduct_by_student: Mapping[int, ConductScores | None],
    weight_for_class: Mapping[int, float | None],
    criteria: Mapping[str, ConductCriterionSchema] | None = None,
    subjects_by_class: Mapping[int, Sequence[int]] | None = None,
    default_conduct_max: float = 100,
) -> WeightedSummary:
    """Weighted final scores for every roster student plus class figures."""
    students = []
    for student in roster:
        own_subjects = subjects_for_student(student, subject_ids, subjects_by_class)
        academic = academic_average(student_marks(student, own_subjects, cells, ledger))
        conduct = conduct_average(
            conduct_by_student.get(student.student_id),
            criteria,
            default_conduct_max,
        )
        weight = weight_for_class.get(student.class_id) if student.class_id is not None else None
        final = final_score(academic, conduct, weight)
        students.append(
            StudentWeightedScore(
                student_id=student.student_id,
                student_name=student.student_name,
                class_id=student.class_id,
                academic_average=academic,
                conduct_average=conduct,
                conduct_weight=weight,
                final_score=final,
                final_display=format_score(final),
            )
        )

    subject_averages = [
        SubjectAverage(subject_id=subject_id, average=average, display=format_score(average))
        for subject_id, average in subject_class_averages(roster, subject_ids, cells, ledger).items()
    ]
    class_average = mean(s.final_score for s in students if s.final_score is not None)

    return WeightedSummary(
        students=students,
        subject_averages=subject_averages,
        class_weighted_average=class_average,
        class_weighted_display=format_score(class_average),
    )
