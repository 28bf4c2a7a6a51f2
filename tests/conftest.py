import asyncio
from collections.abc import Iterable, Sequence

import pytest

from results_engine.core.exceptions import NotFoundError
from results_engine.core.scheduler import ManualTimers
from results_engine.schemas.exam import (
    NON_ENROLLED_RECORD_TYPES,
    ConductCriterionSchema,
    ConductEntryRecord,
    ConductSaveItem,
    ConductScores,
    ExamConfig,
    ExclusionEntry,
    GradeBandSchema,
    OptOutEntry,
    ResultSaveItem,
    RosterEntry,
    SubjectInfo,
    SubjectResultRecord,
)
from results_engine.services.grading import CellSentinel, resolve_grade, scale_or_default
from results_engine.services.session import ExamSession

MATHS, SCIENCE, ART = 100, 200, 300
CLASS_A, CLASS_B = 10, 20


class InMemoryResultsStore:
    """ResultsStore kept in dicts, with hooks to fail or hold calls."""

    def __init__(self):
        self.exams: dict[int, ExamConfig] = {}
        self.bands: dict[int, list[GradeBandSchema]] = {}
        self.criteria: list[ConductCriterionSchema] = []
        self.students: list[RosterEntry] = []
        self.snapshots: dict[int, list[RosterEntry]] = {}
        self.exclusions: dict[int, list[ExclusionEntry]] = {}
        self.opt_outs: dict[int, list[OptOutEntry]] = {}
        # (exam_id, subject_id, student_id) -> record
        self.results: dict[tuple[int, int, int], SubjectResultRecord] = {}
        # (exam_id, teacher_id, subject_id, student_id) -> scores
        self.conduct: dict[tuple[int, int | None, int | None, int], ConductScores] = {}

        self.calls: list[str] = []
        self.save_batches: list[list[ResultSaveItem]] = []
        self.fail_fetches = 0
        self.fail_saves = 0
        self.fetch_gates: dict[int, asyncio.Event] = {}
        self.save_gate: asyncio.Event | None = None
        self.active_saves = 0
        self.max_concurrent_saves = 0

    def _check_fetch(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise ConnectionError("store unavailable")

    # Reads

    async def fetch_exam(self, exam_id: int) -> ExamConfig:
        self._check_fetch("fetch_exam")
        gate = self.fetch_gates.get(exam_id)
        if gate is not None:
            await gate.wait()
        if exam_id not in self.exams:
            raise NotFoundError("Exam", exam_id)
        return self.exams[exam_id]

    async def fetch_conduct_criteria(self) -> list[ConductCriterionSchema]:
        self._check_fetch("fetch_conduct_criteria")
        return list(self.criteria)

    async def fetch_snapshot_roster(self, exam_id: int) -> list[RosterEntry]:
        self._check_fetch("fetch_snapshot_roster")
        return list(self.snapshots.get(exam_id, []))

    async def fetch_live_roster(self, class_id: int | None) -> list[RosterEntry]:
        self._check_fetch("fetch_live_roster")
        return [s for s in self.students if class_id is None or s.class_id == class_id]

    async def fetch_exclusions(self, exam_id: int, class_id: int | None = None) -> list[ExclusionEntry]:
        self._check_fetch("fetch_exclusions")
        return [
            e for e in self.exclusions.get(exam_id, [])
            if class_id is None or e.class_id in (None, class_id)
        ]

    async def fetch_subject_opt_outs(self, exam_id: int, subject_id: int | None = None) -> list[OptOutEntry]:
        self._check_fetch("fetch_subject_opt_outs")
        return [
            o for o in self.opt_outs.get(exam_id, [])
            if subject_id is None or o.subject_id == subject_id
        ]

    async def fetch_subject_results(
        self, exam_id: int, subject_id: int, student_ids: Sequence[int]
    ) -> list[SubjectResultRecord]:
        self._check_fetch("fetch_subject_results")
        wanted = set(student_ids)
        return [
            record for (e, s, student_id), record in self.results.items()
            if e == exam_id and s == subject_id and student_id in wanted
        ]

    async def fetch_conduct_entries(self, exam_id: int, teacher_id: int | None) -> list[ConductEntryRecord]:
        self._check_fetch("fetch_conduct_entries")
        return [
            ConductEntryRecord(student_id=student_id, subject_id=subject_id, scores=scores)
            for (e, t, subject_id, student_id), scores in self.conduct.items()
            if e == exam_id and (teacher_id is None or t == teacher_id)
        ]

    async def fetch_grading_scale(self, exam_id: int) -> list[GradeBandSchema] | None:
        self._check_fetch("fetch_grading_scale")
        return self.bands.get(exam_id)

    # Writes

    async def _enter_save(self) -> None:
        self.active_saves += 1
        self.max_concurrent_saves = max(self.max_concurrent_saves, self.active_saves)
        try:
            if self.save_gate is not None:
                await self.save_gate.wait()
            if self.fail_saves:
                self.fail_saves -= 1
                raise ConnectionError("database is down")
        finally:
            self.active_saves -= 1

    async def save_results(
        self,
        exam_id: int,
        subject_id: int,
        class_id: int | None,
        items: Sequence[ResultSaveItem],
    ) -> list[SubjectResultRecord]:
        self.calls.append("save_results")
        await self._enter_save()
        self.save_batches.append(list(items))
        opted_out = {
            o.student_id for o in self.opt_outs.get(exam_id, []) if o.subject_id == subject_id
        }
        scale = scale_or_default(self.bands.get(exam_id))
        saved = []
        for item in items:
            if item.student_id in opted_out:
                continue
            key = (exam_id, subject_id, item.student_id)
            if item.is_absent:
                record = SubjectResultRecord(
                    student_id=item.student_id,
                    mark=None,
                    grade=resolve_grade(CellSentinel.ABSENT),
                )
            elif item.mark is not None:
                record = SubjectResultRecord(
                    student_id=item.student_id,
                    mark=item.mark,
                    grade=resolve_grade(item.mark, scale),
                )
            else:
                self.results.pop(key, None)
                continue
            self.results[key] = record
            saved.append(record)
        return saved

    async def save_conduct_entries(
        self,
        exam_id: int,
        class_id: int | None,
        subject_id: int | None,
        teacher_id: int | None,
        items: Sequence[ConductSaveItem],
    ) -> None:
        self.calls.append("save_conduct_entries")
        await self._enter_save()
        for item in items:
            self.conduct[(exam_id, teacher_id, subject_id, item.student_id)] = item.scores

    async def capture_roster_snapshot(self, exam_id: int, class_ids: Iterable[int]) -> int:
        self.calls.append("capture_roster_snapshot")
        if self.snapshots.get(exam_id):
            return 0
        class_ids = set(class_ids)
        excluded = {e.student_id for e in self.exclusions.get(exam_id, [])}
        self.snapshots[exam_id] = [
            s for s in self.students
            if s.class_id in class_ids
            and s.record_type not in NON_ENROLLED_RECORD_TYPES
            and s.student_id not in excluded
        ]
        return len(self.snapshots[exam_id])

    # Helpers

    def stored_cell(self, exam_id: int, subject_id: int, student_id: int) -> SubjectResultRecord | None:
        return self.results.get((exam_id, subject_id, student_id))


def student(student_id: int, name: str, class_id: int | None = CLASS_A, record_type: str = "student") -> RosterEntry:
    return RosterEntry(
        student_id=student_id,
        student_name=name,
        class_id=class_id,
        record_type=record_type,
    )


@pytest.fixture
def store() -> InMemoryResultsStore:
    """Exam 1: classes A and B, Maths/Science/Art, 20% conduct weight for class A."""
    store = InMemoryResultsStore()
    store.exams[1] = ExamConfig(
        id=1,
        name="Mid Year 2026",
        class_ids=[CLASS_A, CLASS_B],
        class_weights={CLASS_A: 20.0, CLASS_B: None},
        subjects=[
            SubjectInfo(id=MATHS, name="Mathematics"),
            SubjectInfo(id=SCIENCE, name="Science"),
            SubjectInfo(id=ART, name="Art"),
        ],
    )
    store.exams[2] = ExamConfig(
        id=2,
        name="Final 2026",
        class_ids=[CLASS_A],
        class_weights={CLASS_A: None},
        subjects=[SubjectInfo(id=MATHS, name="Mathematics")],
    )
    store.students = [
        student(1, "Aisyah"),
        student(2, "Bala"),
        student(3, "Chong"),
        student(4, "Dewi"),
        student(5, "Emir", class_id=CLASS_B),
        student(6, "Farah", record_type="prospect"),
    ]
    return store


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def session(store, timers) -> ExamSession:
    return ExamSession(store, timers, session_id="test", teacher_id=7, debounce_seconds=1.2)


async def wait_until(predicate, attempts: int = 100) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
