from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from results_engine.core.database import Base
from results_engine.core.exceptions import NotFoundError
from results_engine.core.scheduler import ManualTimers
from results_engine.models import (
    ConductEntry,
    Exam,
    ExamClass,
    ExamExclusion,
    ExamKind,
    ExamResult,
    ExamSubject,
    GradingBand,
    SchoolClass,
    Student,
    Subject,
    SubjectOptOut,
)
from results_engine.schemas.exam import ConductSaveItem, ConductScores, ResultSaveItem
from results_engine.services.session import ExamSession
from results_engine.services.store import SqlResultsStore


@pytest.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as session, session.begin():
        class_a = SchoolClass(name="5 Amanah")
        class_b = SchoolClass(name="5 Bestari")
        maths = Subject(name="Mathematics")
        art = Subject(name="Art")
        session.add_all([class_a, class_b, maths, art])
        await session.flush()

        students = [
            Student(student_name="Aisyah", class_id=class_a.id),
            Student(student_name="Bala", class_id=class_a.id),
            Student(student_name="Chong", class_id=class_a.id),
            Student(student_name="Dewi", class_id=class_b.id),
            Student(student_name="Farah", class_id=class_a.id, record_type="prospect"),
        ]
        session.add_all(students)
        exam = Exam(name="Mid Year 2026", kind=ExamKind.EXAM)
        session.add(exam)
        await session.flush()

        session.add_all([
            ExamClass(exam_id=exam.id, class_id=class_a.id, conduct_weightage=Decimal("20")),
            ExamClass(exam_id=exam.id, class_id=class_b.id),
            ExamSubject(exam_id=exam.id, subject_id=maths.id),
            ExamSubject(exam_id=exam.id, subject_id=art.id),
            GradingBand(exam_id=exam.id, label="A", min_mark=Decimal("80")),
            GradingBand(exam_id=exam.id, label="B", min_mark=Decimal("60")),
            GradingBand(exam_id=exam.id, label="C", min_mark=Decimal("0")),
            ExamExclusion(exam_id=exam.id, class_id=None, student_id=students[2].id),
            SubjectOptOut(exam_id=exam.id, subject_id=art.id, student_id=students[1].id),
        ])

    yield SimpleNamespace(
        factory=factory,
        store=SqlResultsStore(factory),
        exam_id=exam.id,
        class_a=class_a.id,
        class_b=class_b.id,
        maths=maths.id,
        art=art.id,
        student_ids=[s.id for s in students],
    )
    await engine.dispose()


async def count(factory, model) -> int:
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def test_fetch_exam_config(db):
    config = await db.store.fetch_exam(db.exam_id)

    assert config.name == "Mid Year 2026"
    assert config.class_ids == [db.class_a, db.class_b]
    assert config.class_weights == {db.class_a: 20.0, db.class_b: None}
    assert [s.name for s in config.subjects] == ["Mathematics", "Art"]


async def test_unknown_exam(db):
    with pytest.raises(NotFoundError):
        await db.store.fetch_exam(9999)


async def test_grading_scale_ordered_by_threshold(db):
    bands = await db.store.fetch_grading_scale(db.exam_id)

    assert [(b.label, b.min_mark) for b in bands] == [("A", 80), ("B", 60), ("C", 0)]
    assert await db.store.fetch_grading_scale(9999) is None


async def test_save_results_is_idempotent_and_grades_with_exam_scale(db):
    aisyah = db.student_ids[0]
    items = [ResultSaveItem(student_id=aisyah, mark=72.5)]

    first = await db.store.save_results(db.exam_id, db.maths, db.class_a, items)
    await db.store.save_results(db.exam_id, db.maths, db.class_a, items)

    assert first[0].grade == "B"
    assert await count(db.factory, ExamResult) == 1
    stored = await db.store.fetch_subject_results(db.exam_id, db.maths, [aisyah])
    assert stored[0].mark == 72.5 and stored[0].grade == "B"


async def test_absent_and_cleared_results(db):
    aisyah, dewi = db.student_ids[0], db.student_ids[3]
    await db.store.save_results(db.exam_id, db.maths, None, [
        ResultSaveItem(student_id=aisyah, mark=90),
        ResultSaveItem(student_id=dewi, is_absent=True),
    ])

    await db.store.save_results(db.exam_id, db.maths, None, [ResultSaveItem(student_id=aisyah)])

    records = await db.store.fetch_subject_results(db.exam_id, db.maths, [aisyah, dewi])
    assert [(r.student_id, r.mark, r.grade) for r in records] == [(dewi, None, "TH")]
    assert records[0].is_absent


async def test_opted_out_students_are_skipped(db):
    bala = db.student_ids[1]

    saved = await db.store.save_results(db.exam_id, db.art, db.class_a, [
        ResultSaveItem(student_id=bala, mark=88),
    ])

    assert saved == []
    assert await count(db.factory, ExamResult) == 0


async def test_snapshot_captured_once_without_excluded_or_prospects(db):
    aisyah, bala, _, dewi, _ = db.student_ids

    captured = await db.store.capture_roster_snapshot(db.exam_id, [db.class_a, db.class_b])
    again = await db.store.capture_roster_snapshot(db.exam_id, [db.class_a, db.class_b])

    assert captured == 3
    assert again == 0

    # Moving a student afterwards does not change the snapshot
    async with db.factory() as session, session.begin():
        student = await session.get(Student, aisyah)
        student.class_id = db.class_b
    snapshot = await db.store.fetch_snapshot_roster(db.exam_id)
    assert {(s.student_id, s.class_id) for s in snapshot} == {
        (aisyah, db.class_a),
        (bala, db.class_a),
        (dewi, db.class_b),
    }


async def test_exclusions_and_opt_outs(db):
    exclusions = await db.store.fetch_exclusions(db.exam_id, db.class_b)
    opt_outs = await db.store.fetch_subject_opt_outs(db.exam_id, db.art)

    assert [(e.student_id, e.class_id) for e in exclusions] == [(db.student_ids[2], None)]
    assert [(o.student_id, o.subject_id) for o in opt_outs] == [(db.student_ids[1], db.art)]
    assert await db.store.fetch_subject_opt_outs(db.exam_id, db.maths) == []


async def test_conduct_entries_upsert(db):
    aisyah = db.student_ids[0]
    item = ConductSaveItem(student_id=aisyah, scores=ConductScores(effort=4, discipline=5))

    await db.store.save_conduct_entries(db.exam_id, db.class_a, db.maths, 7, [item])
    await db.store.save_conduct_entries(db.exam_id, db.class_a, db.maths, 7, [item])
    await db.store.save_conduct_entries(
        db.exam_id, db.class_a, None, 7,
        [ConductSaveItem(student_id=aisyah, scores=ConductScores(effort=3))],
    )

    assert await count(db.factory, ConductEntry) == 2
    entries = {e.subject_id: e for e in await db.store.fetch_conduct_entries(db.exam_id, 7)}
    assert entries[db.maths].scores.effort == 4
    assert entries[db.maths].scores.discipline == 5
    assert entries[None].scores.effort == 3
    assert await db.store.fetch_conduct_entries(db.exam_id, 8) == []


async def test_session_round_trip_over_sql(db):
    session = ExamSession(db.store, ManualTimers(), teacher_id=7)
    aisyah, bala = db.student_ids[0], db.student_ids[1]

    rows = await session.select_tuple(db.exam_id, db.class_a, db.maths)
    assert [r.student_name for r in rows] == ["Aisyah", "Bala"]

    await session.paste_column(0, "85\nTH")
    status = await session.save_now()
    assert status.saved_rows == 2

    reloaded = {r.student_id: r for r in await session.reload()}
    assert reloaded[aisyah].mark == 85 and reloaded[aisyah].grade == "A"
    assert reloaded[bala].is_absent and reloaded[bala].grade == "TH"
    assert not any(r.dirty for r in reloaded.values())
    assert await db.store.fetch_snapshot_roster(db.exam_id) != []
