"""Exam configuration models."""

import enum
from decimal import Decimal

from sqlalchemy import DECIMAL, BigInteger, Boolean, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_engine.core.database import Base
from results_engine.models.base import ExamScopedMixin, IDMixin, TimestampMixin


class ExamKind(str, enum.Enum):
    """Exam kinds."""

    EXAM = "exam"
    QUIZ = "quiz"


class ConductScaleKind(str, enum.Enum):
    """How raw conduct scores for a dimension are expressed."""

    FIVE_POINT = "five-point"
    PERCENTAGE = "percentage"
    POINTS = "points"


class Exam(Base, IDMixin, TimestampMixin):
    """Exam model. Metadata stays editable once results exist."""

    __tablename__ = "exams"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[ExamKind] = mapped_column(
        Enum(ExamKind, values_callable=lambda kinds: [k.value for k in kinds]),
        nullable=False,
        default=ExamKind.EXAM,
    )
    is_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    exam_classes: Mapped[list["ExamClass"]] = relationship(
        "ExamClass",
        back_populates="exam",
        lazy="selectin",
        order_by="ExamClass.id",
        cascade="all, delete-orphan",
    )
    exam_subjects: Mapped[list["ExamSubject"]] = relationship(
        "ExamSubject",
        lazy="selectin",
        order_by="ExamSubject.id",
        cascade="all, delete-orphan",
    )
    class_subjects: Mapped[list["ExamClassSubject"]] = relationship(
        "ExamClassSubject",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Exam(id={self.id}, name={self.name}, kind={self.kind})>"


class ExamClass(Base, IDMixin, ExamScopedMixin):
    """A class sitting an exam, with its conduct weightage (0-100)."""

    __tablename__ = "exam_classes"

    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
    )
    conduct_weightage: Mapped[Decimal | None] = mapped_column(DECIMAL(5, 2), nullable=True)

    exam: Mapped["Exam"] = relationship("Exam", back_populates="exam_classes")

    __table_args__ = (
        UniqueConstraint("exam_id", "class_id", name="uq_exam_class"),
    )


class ExamSubject(Base, IDMixin, ExamScopedMixin):
    """A subject examined in an exam."""

    __tablename__ = "exam_subjects"

    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("exam_id", "subject_id", name="uq_exam_subject"),
    )


class ExamClassSubject(Base, IDMixin, ExamScopedMixin):
    """Optional class x subject matrix narrowing which subjects a class sits."""

    __tablename__ = "exam_class_subjects"

    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("exam_id", "class_id", "subject_id", name="uq_exam_class_subject"),
    )


class GradingBand(Base, IDMixin, ExamScopedMixin):
    """One (label, minimum mark) band of an exam's grading scale."""

    __tablename__ = "grading_bands"

    label: Mapped[str] = mapped_column(String(10), nullable=False)
    min_mark: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("exam_id", "label", name="uq_grading_band_label"),
    )


class ConductCriterion(Base, IDMixin, TimestampMixin):
    """Scale metadata for one conduct dimension."""

    __tablename__ = "conduct_criteria"

    key: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    scale_kind: Mapped[ConductScaleKind] = mapped_column(
        Enum(ConductScaleKind, values_callable=lambda kinds: [k.value for k in kinds]),
        nullable=False,
        default=ConductScaleKind.PERCENTAGE,
    )
    max_score: Mapped[Decimal | None] = mapped_column(DECIMAL(7, 2), nullable=True)
