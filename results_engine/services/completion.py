"""Completion and missing-subject tracking."""

import math
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import NamedTuple

from results_engine.schemas.exam import RosterEntry
from results_engine.schemas.session import (
    CompletionSummary,
    StudentCompletion,
    SubjectCompletion,
)
from results_engine.services.grading import (
    ABSENT_GRADE,
    GradingScale,
    cell_grade,
    grade_rank,
)
from results_engine.services.ledger import ExamLedger


class CellState(NamedTuple):
    """Current (possibly unsaved) content of one student/subject cell."""

    mark: float | None = None
    is_absent: bool = False


EMPTY_CELL = CellState()

CellMap = Mapping[tuple[int, int], CellState]


def has_mark(cell: CellState) -> bool:
    return cell.mark is not None and math.isfinite(cell.mark)


def is_filled(cell: CellState, opted_out: bool) -> bool:
    """A cell is filled when it has a mark, is absent, or is opted out."""
    return opted_out or cell.is_absent or has_mark(cell)


def subjects_for_student(
    student: RosterEntry,
    subject_ids: Sequence[int],
    subjects_by_class: Mapping[int, Sequence[int]] | None = None,
) -> list[int]:
    """Subjects a student sits, in column order."""
    if subjects_by_class and student.class_id in subjects_by_class:
        allowed = set(subjects_by_class[student.class_id])
        return [sid for sid in subject_ids if sid in allowed]
    return list(subject_ids)


def _histogram_order(label: str, scale: GradingScale | None) -> tuple[int, str]:
    rank = grade_rank(label, scale)
    if rank is None:
        # TH and unknown labels after letter grades
        return 10_000 if label == ABSENT_GRADE else 9_999, label
    return rank, label


def summarize_completion(
    roster: Sequence[RosterEntry],
    subject_ids: Sequence[int],
    cells: CellMap,
    ledger: ExamLedger,
    scale: GradingScale | None = None,
    subjects_by_class: Mapping[int, Sequence[int]] | None = None,
) -> CompletionSummary:
    """Classify every roster cell as filled or missing.

    ``cells`` must reflect the live draft state so that an unsaved edit
    flips a cell immediately. Opt-outs count as filled: the completion
    percentage means "nothing left for a human to enter".
    """
    filled_by_subject: Counter[int] = Counter()
    total_by_subject: Counter[int] = Counter()
    students: list[StudentCompletion] = []

    for student in roster:
        own_subjects = subjects_for_student(student, subject_ids, subjects_by_class)
        missing: list[int] = []
        grades: Counter[str] = Counter()

        for subject_id in own_subjects:
            cell = cells.get((student.student_id, subject_id), EMPTY_CELL)
            opted_out = ledger.is_opted_out(student.student_id, subject_id)
            total_by_subject[subject_id] += 1
            if is_filled(cell, opted_out):
                filled_by_subject[subject_id] += 1
            else:
                missing.append(subject_id)
            if not opted_out:
                grade = cell_grade(cell.mark, cell.is_absent, False, scale)
                if grade:
                    grades[grade] += 1

        students.append(
            StudentCompletion(
                student_id=student.student_id,
                student_name=student.student_name,
                completed=len(own_subjects) - len(missing),
                missing=len(missing),
                total=len(own_subjects),
                missing_subject_ids=missing,
                grade_counts={
                    label: grades[label]
                    for label in sorted(grades, key=lambda g: _histogram_order(g, scale))
                },
            )
        )

    subjects = []
    for subject_id in subject_ids:
        total = total_by_subject[subject_id]
        filled = filled_by_subject[subject_id]
        subjects.append(
            SubjectCompletion(
                subject_id=subject_id,
                filled=filled,
                total=total,
                ratio=filled / total if total else None,
            )
        )

    return CompletionSummary(subjects=subjects, students=students)
