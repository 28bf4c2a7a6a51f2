"""Class, subject and student models."""

from sqlalchemy import BigInteger, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_engine.core.database import Base
from results_engine.models.base import IDMixin, TimestampMixin


class SchoolClass(Base, IDMixin, TimestampMixin):
    """A class (homeroom) students are assigned to."""

    __tablename__ = "classes"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    students: Mapped[list["Student"]] = relationship(
        "Student",
        back_populates="school_class",
    )

    def __repr__(self) -> str:
        return f"<SchoolClass(id={self.id}, name={self.name})>"


class Subject(Base, IDMixin, TimestampMixin):
    """Subject model."""

    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Subject(id={self.id}, name={self.name})>"


class Student(Base, IDMixin, TimestampMixin):
    """Student model. The class assignment can change after an exam snapshot."""

    __tablename__ = "students"

    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # 'student' for enrolled pupils; 'prospect' and 'withdrawn' never sit exams
    record_type: Mapped[str] = mapped_column(String(20), nullable=False, default="student")

    school_class: Mapped["SchoolClass | None"] = relationship(
        "SchoolClass",
        back_populates="students",
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, name={self.student_name}, class_id={self.class_id})>"
