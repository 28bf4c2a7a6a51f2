"""Persistence collaborator for the results engine."""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Protocol

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from results_engine.core.exceptions import NotFoundError
from results_engine.models.exam import ConductCriterion, Exam, GradingBand
from results_engine.models.result import (
    ConductEntry,
    ExamExclusion,
    ExamResult,
    ExamRosterEntry,
    SubjectOptOut,
)
from results_engine.models.student import Student, Subject
from results_engine.schemas.exam import (
    CONDUCT_DIMENSIONS,
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

logger = logging.getLogger(__name__)


class ResultsStore(Protocol):
    """Async store of record consumed by the engine.

    Saves are idempotent upserts: repeating a save with identical values
    changes nothing.
    """

    async def fetch_exam(self, exam_id: int) -> ExamConfig: ...

    async def fetch_conduct_criteria(self) -> list[ConductCriterionSchema]: ...

    async def fetch_snapshot_roster(self, exam_id: int) -> list[RosterEntry]: ...

    async def fetch_live_roster(self, class_id: int | None) -> list[RosterEntry]: ...

    async def fetch_exclusions(self, exam_id: int, class_id: int | None = None) -> list[ExclusionEntry]: ...

    async def fetch_subject_opt_outs(self, exam_id: int, subject_id: int | None = None) -> list[OptOutEntry]: ...

    async def fetch_subject_results(
        self, exam_id: int, subject_id: int, student_ids: Sequence[int]
    ) -> list[SubjectResultRecord]: ...

    async def fetch_conduct_entries(self, exam_id: int, teacher_id: int | None) -> list[ConductEntryRecord]: ...

    async def fetch_grading_scale(self, exam_id: int) -> list[GradeBandSchema] | None: ...

    async def save_results(
        self, exam_id: int, subject_id: int, class_id: int | None, items: Sequence[ResultSaveItem]
    ) -> list[SubjectResultRecord]: ...

    async def save_conduct_entries(
        self,
        exam_id: int,
        class_id: int | None,
        subject_id: int | None,
        teacher_id: int | None,
        items: Sequence[ConductSaveItem],
    ) -> None: ...

    async def capture_roster_snapshot(self, exam_id: int, class_ids: Iterable[int]) -> int: ...


def _to_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _to_decimal(value: float | None) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


class SqlResultsStore:
    """ResultsStore over the relational schema, one transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ==========================================
    # Exam configuration
    # ==========================================

    async def fetch_exam(self, exam_id: int) -> ExamConfig:
        async with self.session_factory() as db:
            exam = await db.get(Exam, exam_id)
            if not exam:
                raise NotFoundError("Exam", exam_id)

            subject_ids = [es.subject_id for es in exam.exam_subjects]
            names = {}
            if subject_ids:
                result = await db.execute(select(Subject).where(Subject.id.in_(subject_ids)))
                names = {s.id: s.name for s in result.scalars().all()}

            class_subjects: dict[int, list[int]] = {}
            for row in exam.class_subjects:
                class_subjects.setdefault(row.class_id, []).append(row.subject_id)

            return ExamConfig(
                id=exam.id,
                name=exam.name,
                kind=exam.kind,
                is_released=exam.is_released,
                class_ids=[ec.class_id for ec in exam.exam_classes],
                class_weights={
                    ec.class_id: _to_float(ec.conduct_weightage) for ec in exam.exam_classes
                },
                subjects=[
                    SubjectInfo(id=sid, name=names.get(sid, str(sid))) for sid in subject_ids
                ],
                class_subjects=class_subjects,
            )

    async def fetch_conduct_criteria(self) -> list[ConductCriterionSchema]:
        async with self.session_factory() as db:
            result = await db.execute(select(ConductCriterion).order_by(ConductCriterion.key))
            return [
                ConductCriterionSchema(
                    key=c.key,
                    scale_kind=c.scale_kind,
                    max_score=_to_float(c.max_score),
                )
                for c in result.scalars().all()
            ]

    async def fetch_grading_scale(self, exam_id: int) -> list[GradeBandSchema] | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(GradingBand)
                .where(GradingBand.exam_id == exam_id)
                .order_by(GradingBand.min_mark.desc())
            )
            bands = result.scalars().all()
            if not bands:
                return None
            return [GradeBandSchema(label=b.label, min_mark=float(b.min_mark)) for b in bands]

    # ==========================================
    # Roster and ledger
    # ==========================================

    async def fetch_snapshot_roster(self, exam_id: int) -> list[RosterEntry]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ExamRosterEntry, Student.student_name)
                .join(Student, Student.id == ExamRosterEntry.student_id)
                .where(ExamRosterEntry.exam_id == exam_id)
            )
            return [
                RosterEntry(
                    student_id=entry.student_id,
                    student_name=name,
                    class_id=entry.class_id,
                )
                for entry, name in result.all()
            ]

    async def fetch_live_roster(self, class_id: int | None) -> list[RosterEntry]:
        async with self.session_factory() as db:
            query = select(Student)
            if class_id is not None:
                query = query.where(Student.class_id == class_id)
            result = await db.execute(query.order_by(Student.student_name, Student.id))
            return [
                RosterEntry(
                    student_id=s.id,
                    student_name=s.student_name,
                    class_id=s.class_id,
                    record_type=s.record_type,
                )
                for s in result.scalars().all()
            ]

    async def fetch_exclusions(self, exam_id: int, class_id: int | None = None) -> list[ExclusionEntry]:
        async with self.session_factory() as db:
            query = select(ExamExclusion).where(ExamExclusion.exam_id == exam_id)
            if class_id is not None:
                query = query.where(
                    or_(ExamExclusion.class_id == class_id, ExamExclusion.class_id.is_(None))
                )
            result = await db.execute(query)
            return [
                ExclusionEntry(student_id=e.student_id, class_id=e.class_id)
                for e in result.scalars().all()
            ]

    async def fetch_subject_opt_outs(self, exam_id: int, subject_id: int | None = None) -> list[OptOutEntry]:
        async with self.session_factory() as db:
            query = select(SubjectOptOut).where(SubjectOptOut.exam_id == exam_id)
            if subject_id is not None:
                query = query.where(SubjectOptOut.subject_id == subject_id)
            result = await db.execute(query)
            return [
                OptOutEntry(student_id=o.student_id, subject_id=o.subject_id)
                for o in result.scalars().all()
            ]

    async def capture_roster_snapshot(self, exam_id: int, class_ids: Iterable[int]) -> int:
        """Snapshot the exam's current membership once.

        Returns the number of rows captured; 0 when a snapshot already
        exists or there is nobody to capture.
        """
        class_ids = list(class_ids)
        if not class_ids:
            return 0
        async with self.session_factory() as db, db.begin():
            existing = await db.execute(
                select(ExamRosterEntry.id).where(ExamRosterEntry.exam_id == exam_id).limit(1)
            )
            if existing.first() is not None:
                return 0

            excluded = set(
                (await db.execute(
                    select(ExamExclusion.student_id).where(ExamExclusion.exam_id == exam_id)
                )).scalars().all()
            )
            students = (await db.execute(
                select(Student).where(
                    Student.class_id.in_(class_ids),
                    Student.record_type.not_in(sorted(NON_ENROLLED_RECORD_TYPES)),
                )
            )).scalars().all()

            captured = 0
            for student in students:
                if student.id in excluded:
                    continue
                db.add(ExamRosterEntry(
                    exam_id=exam_id,
                    student_id=student.id,
                    class_id=student.class_id,
                ))
                captured += 1

        logger.info(f"Captured roster snapshot for exam {exam_id}: {captured} students")
        return captured

    # ==========================================
    # Results
    # ==========================================

    async def fetch_subject_results(
        self, exam_id: int, subject_id: int, student_ids: Sequence[int]
    ) -> list[SubjectResultRecord]:
        if not student_ids:
            return []
        async with self.session_factory() as db:
            result = await db.execute(
                select(ExamResult).where(
                    ExamResult.exam_id == exam_id,
                    ExamResult.subject_id == subject_id,
                    ExamResult.student_id.in_(list(student_ids)),
                )
            )
            return [
                SubjectResultRecord(
                    student_id=r.student_id,
                    mark=_to_float(r.mark),
                    grade=r.grade,
                )
                for r in result.scalars().all()
            ]

    async def save_results(
        self,
        exam_id: int,
        subject_id: int,
        class_id: int | None,
        items: Sequence[ResultSaveItem],
    ) -> list[SubjectResultRecord]:
        """Upsert a batch of results for one subject.

        Opted-out students are skipped, absent rows store a null mark with
        grade TH, and rows with neither mark nor absence are removed.
        """
        if not items:
            return []
        student_ids = [item.student_id for item in items]

        async with self.session_factory() as db, db.begin():
            opted_out = set(
                (await db.execute(
                    select(SubjectOptOut.student_id).where(
                        SubjectOptOut.exam_id == exam_id,
                        SubjectOptOut.subject_id == subject_id,
                        SubjectOptOut.student_id.in_(student_ids),
                    )
                )).scalars().all()
            )
            bands = (await db.execute(
                select(GradingBand).where(GradingBand.exam_id == exam_id)
            )).scalars().all()
            scale = scale_or_default(
                GradeBandSchema(label=b.label, min_mark=float(b.min_mark)) for b in bands
            )
            existing = {
                r.student_id: r
                for r in (await db.execute(
                    select(ExamResult).where(
                        ExamResult.exam_id == exam_id,
                        ExamResult.subject_id == subject_id,
                        ExamResult.student_id.in_(student_ids),
                    )
                )).scalars().all()
            }

            cleared = []
            saved: list[SubjectResultRecord] = []
            for item in items:
                if item.student_id in opted_out:
                    continue
                if item.is_absent:
                    mark, grade = None, resolve_grade(CellSentinel.ABSENT, scale)
                elif item.mark is not None:
                    mark, grade = item.mark, resolve_grade(item.mark, scale)
                else:
                    cleared.append(item.student_id)
                    continue

                record = existing.get(item.student_id)
                if record:
                    record.mark = _to_decimal(mark)
                    record.grade = grade
                else:
                    db.add(ExamResult(
                        exam_id=exam_id,
                        subject_id=subject_id,
                        student_id=item.student_id,
                        mark=_to_decimal(mark),
                        grade=grade,
                    ))
                saved.append(SubjectResultRecord(student_id=item.student_id, mark=mark, grade=grade))

            if cleared:
                await db.execute(
                    delete(ExamResult).where(
                        ExamResult.exam_id == exam_id,
                        ExamResult.subject_id == subject_id,
                        ExamResult.student_id.in_(cleared),
                    )
                )

        if opted_out:
            logger.info(
                f"Skipped {len(opted_out)} opted-out students saving exam {exam_id} subject {subject_id}"
            )
        logger.info(
            f"Saved {len(saved)} results ({len(cleared)} cleared) for exam {exam_id} "
            f"subject {subject_id} class {class_id}"
        )
        return saved

    # ==========================================
    # Conduct
    # ==========================================

    async def fetch_conduct_entries(self, exam_id: int, teacher_id: int | None) -> list[ConductEntryRecord]:
        async with self.session_factory() as db:
            query = select(ConductEntry).where(ConductEntry.exam_id == exam_id)
            if teacher_id is not None:
                query = query.where(ConductEntry.teacher_id == teacher_id)
            result = await db.execute(query)
            return [
                ConductEntryRecord(
                    student_id=e.student_id,
                    subject_id=e.subject_id,
                    scores=ConductScores(**{
                        dim: _to_float(getattr(e, dim)) for dim in CONDUCT_DIMENSIONS
                    }),
                )
                for e in result.scalars().all()
            ]

    async def save_conduct_entries(
        self,
        exam_id: int,
        class_id: int | None,
        subject_id: int | None,
        teacher_id: int | None,
        items: Sequence[ConductSaveItem],
    ) -> None:
        if not items:
            return
        student_ids = [item.student_id for item in items]

        async with self.session_factory() as db, db.begin():
            query = select(ConductEntry).where(
                ConductEntry.exam_id == exam_id,
                ConductEntry.student_id.in_(student_ids),
            )
            if subject_id is None:
                query = query.where(ConductEntry.subject_id.is_(None))
            else:
                query = query.where(ConductEntry.subject_id == subject_id)
            if teacher_id is None:
                query = query.where(ConductEntry.teacher_id.is_(None))
            else:
                query = query.where(ConductEntry.teacher_id == teacher_id)
            existing = {e.student_id: e for e in (await db.execute(query)).scalars().all()}

            for item in items:
                values = {
                    dim: _to_decimal(value) for dim, value in item.scores.as_dict().items()
                }
                entry = existing.get(item.student_id)
                if entry:
                    for dim, value in values.items():
                        setattr(entry, dim, value)
                else:
                    db.add(ConductEntry(
                        exam_id=exam_id,
                        teacher_id=teacher_id,
                        student_id=item.student_id,
                        subject_id=subject_id,
                        **values,
                    ))

        logger.info(
            f"Saved {len(items)} conduct entries for exam {exam_id} class {class_id} subject {subject_id}"
        )
