"""Exam configuration, roster and result schemas."""

from typing import Literal

from pydantic import Field

from results_engine.models.exam import ConductScaleKind, ExamKind
from results_engine.schemas.common import BaseSchema


# ==========================================
# Constants
# ==========================================

CONDUCT_DIMENSIONS = (
    "discipline",
    "effort",
    "participation",
    "motivational_level",
    "character_score",
    "leadership",
)

# Record types that never sit exams
NON_ENROLLED_RECORD_TYPES = frozenset({"prospect", "withdrawn"})


# ==========================================
# Exam Configuration
# ==========================================

class SubjectInfo(BaseSchema):
    """Subject id and display name."""

    id: int
    name: str


class ExamConfig(BaseSchema):
    """Exam metadata needed to grade it."""

    id: int
    name: str
    kind: ExamKind = ExamKind.EXAM
    is_released: bool = False
    class_ids: list[int] = []
    # class_id -> conduct weightage percentage (None when unset)
    class_weights: dict[int, float | None] = {}
    subjects: list[SubjectInfo] = []
    # Optional class x subject matrix; classes missing here sit every subject
    class_subjects: dict[int, list[int]] = {}

    @property
    def subject_ids(self) -> list[int]:
        return [s.id for s in self.subjects]

    def subject_ids_for(self, class_id: int | None) -> list[int]:
        """Subjects sat by a class, or by any of the exam's classes when None."""
        if class_id is None:
            if not self.class_subjects:
                return self.subject_ids
            allowed = {sid for ids in self.class_subjects.values() for sid in ids}
            return [sid for sid in self.subject_ids if sid in allowed]
        if class_id in self.class_subjects:
            allowed = set(self.class_subjects[class_id])
            return [sid for sid in self.subject_ids if sid in allowed]
        return self.subject_ids

    def subject_name(self, subject_id: int) -> str:
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject.name
        return str(subject_id)


class GradeBandSchema(BaseSchema):
    """One band of a grading scale."""

    label: str = Field(..., min_length=1, max_length=10)
    min_mark: float = Field(..., ge=0, le=100)


class GradingScaleResponse(BaseSchema):
    """Grading scale in effect for an exam."""

    exam_id: int
    is_default: bool
    bands: list[GradeBandSchema]


class ConductCriterionSchema(BaseSchema):
    """Scale metadata for a conduct dimension."""

    key: str
    scale_kind: ConductScaleKind = ConductScaleKind.PERCENTAGE
    max_score: float | None = Field(None, gt=0)

    def effective_max(self, default: float = 100) -> float:
        if self.scale_kind == ConductScaleKind.FIVE_POINT:
            return 5.0
        if self.scale_kind == ConductScaleKind.PERCENTAGE:
            return 100.0
        return self.max_score or default


class ConductScores(BaseSchema):
    """Raw scores for the six conduct dimensions."""

    discipline: float | None = Field(None, ge=0)
    effort: float | None = Field(None, ge=0)
    participation: float | None = Field(None, ge=0)
    motivational_level: float | None = Field(None, ge=0)
    character_score: float | None = Field(None, ge=0)
    leadership: float | None = Field(None, ge=0)

    def as_dict(self) -> dict[str, float | None]:
        return {dim: getattr(self, dim) for dim in CONDUCT_DIMENSIONS}

    def is_empty(self) -> bool:
        return all(value is None for value in self.as_dict().values())


# ==========================================
# Roster and Ledger
# ==========================================

class RosterEntry(BaseSchema):
    """A student as seen by an exam roster."""

    student_id: int
    student_name: str
    class_id: int | None = None
    record_type: str = "student"


class ResolvedRoster(BaseSchema):
    """Authoritative, name-ordered roster for an exam/class."""

    exam_id: int
    class_id: int | None
    source: Literal["snapshot", "live"]
    students: list[RosterEntry]

    @property
    def student_ids(self) -> list[int]:
        return [s.student_id for s in self.students]


class ExclusionEntry(BaseSchema):
    """Exam-level exclusion; a null class applies to every class."""

    student_id: int
    class_id: int | None = None


class OptOutEntry(BaseSchema):
    """Subject-level opt-out."""

    student_id: int
    subject_id: int


# ==========================================
# Results and Conduct
# ==========================================

class SubjectResultRecord(BaseSchema):
    """Persisted subject result."""

    student_id: int
    mark: float | None = None
    grade: str | None = None

    @property
    def is_absent(self) -> bool:
        return (self.grade or "").upper() == "TH"


class ConductEntryRecord(BaseSchema):
    """Persisted conduct entry; subject_id None is the override entry."""

    student_id: int
    subject_id: int | None = None
    scores: ConductScores = Field(default_factory=ConductScores)


class ResultSaveItem(BaseSchema):
    """One row of a results batch save."""

    student_id: int
    mark: float | None = Field(None, ge=0, le=100)
    is_absent: bool = False


class ConductSaveItem(BaseSchema):
    """One row of a conduct batch save."""

    student_id: int
    scores: ConductScores
