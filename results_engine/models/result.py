"""Exam result, conduct, roster snapshot and ledger models."""

from decimal import Decimal

from sqlalchemy import DECIMAL, BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_engine.core.database import Base
from results_engine.models.base import ExamScopedMixin, IDMixin, TimestampMixin


class ExamResult(Base, IDMixin, TimestampMixin, ExamScopedMixin):
    """Subject result. Absent rows carry a null mark and grade 'TH'."""

    __tablename__ = "exam_results"

    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mark: Mapped[Decimal | None] = mapped_column(DECIMAL(5, 2), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        UniqueConstraint("exam_id", "subject_id", "student_id", name="uq_exam_result"),
    )

    def __repr__(self) -> str:
        return f"<ExamResult(exam_id={self.exam_id}, subject_id={self.subject_id}, student_id={self.student_id})>"


class ConductEntry(Base, IDMixin, TimestampMixin, ExamScopedMixin):
    """Raw conduct scores recorded by a teacher.

    A null subject marks a cross-subject override that supersedes the
    per-subject entries for the same student.
    """

    __tablename__ = "conduct_entries"

    teacher_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=True,
    )
    discipline: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
    effort: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
    participation: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
    motivational_level: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
    character_score: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
    leadership: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)


class ExamRosterEntry(Base, IDMixin, TimestampMixin, ExamScopedMixin):
    """Immutable roster snapshot row with the class held at capture time."""

    __tablename__ = "exam_roster"

    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    class_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    student: Mapped["Student"] = relationship("Student", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_exam_roster_student"),
    )


class ExamExclusion(Base, IDMixin, TimestampMixin, ExamScopedMixin):
    """Student removed from an exam entirely."""

    __tablename__ = "exam_exclusions"

    class_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_exam_exclusion"),
    )


class SubjectOptOut(Base, IDMixin, TimestampMixin, ExamScopedMixin):
    """Student stays in the exam but is exempt from one subject."""

    __tablename__ = "subject_opt_outs"

    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("exam_id", "subject_id", "student_id", name="uq_subject_opt_out"),
    )


# Import to avoid circular imports
from results_engine.models.student import Student  # noqa: E402
