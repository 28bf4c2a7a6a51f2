"""Exam exclusion and subject opt-out ledger."""

import logging
from collections import defaultdict
from collections.abc import Iterable

from results_engine.schemas.exam import ExclusionEntry, OptOutEntry

logger = logging.getLogger(__name__)


class ExamLedger:
    """Membership sets for one exam: exclusions and subject opt-outs.

    Exclusions remove a student from the exam; opt-outs keep the student
    but exempt them from a single subject. The ledger only answers
    membership questions and never computes scores.
    """

    def __init__(
        self,
        exam_id: int,
        exclusions: Iterable[ExclusionEntry] = (),
        opt_outs: Iterable[OptOutEntry] = (),
    ):
        self.exam_id = exam_id
        # student_id -> class scopes; None means every class
        self._excluded: dict[int, set[int | None]] = defaultdict(set)
        for entry in exclusions:
            self._excluded[entry.student_id].add(entry.class_id)
        self._opted_out: dict[int, set[int]] = defaultdict(set)
        for entry in opt_outs:
            self._opted_out[entry.student_id].add(entry.subject_id)

    def is_excluded(self, exam_id: int, class_id: int | None, student_id: int) -> bool:
        if exam_id != self.exam_id:
            return False
        scopes = self._excluded.get(student_id)
        if not scopes:
            return False
        if class_id is None or None in scopes:
            return True
        return class_id in scopes

    def opted_out_subjects(self, exam_id: int, student_id: int) -> set[int]:
        if exam_id != self.exam_id:
            return set()
        return set(self._opted_out.get(student_id, ()))

    def is_opted_out(self, student_id: int, subject_id: int) -> bool:
        return subject_id in self._opted_out.get(student_id, ())

    def opted_out_students(self, subject_id: int) -> set[int]:
        return {sid for sid, subjects in self._opted_out.items() if subject_id in subjects}

    @property
    def excluded_student_ids(self) -> set[int]:
        return set(self._excluded)

    def __repr__(self) -> str:
        return (
            f"<ExamLedger(exam_id={self.exam_id}, excluded={len(self._excluded)}, "
            f"opted_out={sum(len(s) for s in self._opted_out.values())})>"
        )


async def load_ledger(store, exam_id: int) -> ExamLedger:
    """Fetch every exclusion and opt-out of an exam into a ledger."""
    exclusions = await store.fetch_exclusions(exam_id)
    opt_outs = await store.fetch_subject_opt_outs(exam_id)
    logger.debug(
        f"Loaded ledger for exam {exam_id}: {len(exclusions)} exclusions, {len(opt_outs)} opt-outs"
    )
    return ExamLedger(exam_id, exclusions, opt_outs)
