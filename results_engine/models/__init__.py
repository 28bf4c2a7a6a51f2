"""Database models package."""

from results_engine.models.exam import (
    ConductCriterion,
    ConductScaleKind,
    Exam,
    ExamClass,
    ExamClassSubject,
    ExamKind,
    ExamSubject,
    GradingBand,
)
from results_engine.models.result import (
    ConductEntry,
    ExamExclusion,
    ExamResult,
    ExamRosterEntry,
    SubjectOptOut,
)
from results_engine.models.student import SchoolClass, Student, Subject

__all__ = [
    # Students
    "SchoolClass",
    "Student",
    "Subject",
    # Exam configuration
    "Exam",
    "ExamKind",
    "ExamClass",
    "ExamSubject",
    "ExamClassSubject",
    "GradingBand",
    "ConductCriterion",
    "ConductScaleKind",
    # Results
    "ExamResult",
    "ConductEntry",
    # Roster and ledger
    "ExamRosterEntry",
    "ExamExclusion",
    "SubjectOptOut",
]
