"""Dashboard session schemas: draft rows, requests and summaries."""

import enum
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field

from results_engine.schemas.common import BaseSchema
from results_engine.schemas.exam import ConductScores


class SaveState(str, enum.Enum):
    """Autosave state of one (exam, class, subject) selection."""

    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


# ==========================================
# Draft Rows
# ==========================================

class ResultRow(BaseSchema):
    """Working copy of one student's cell for the selected subject."""

    student_id: int
    student_name: str
    class_id: int | None = None
    mark: float | None = None
    is_absent: bool = False
    opted_out: bool = False
    grade: str | None = None
    conduct: ConductScores = Field(default_factory=ConductScores)
    dirty: bool = False


class DraftEdit(BaseSchema):
    """Fields a user has edited for one student.

    Only fields that were explicitly set count as edits; anything left
    unset means "never edited" and is taken from fresh data on re-entry.
    Conduct is tracked per dimension for the same reason.
    """

    mark: float | None = None
    is_absent: bool = False
    conduct: dict[str, float | None] = {}


# ==========================================
# Requests
# ==========================================

class SessionCreate(BaseSchema):
    """Open a dashboard session."""

    teacher_id: int | None = None


class SelectionRequest(BaseSchema):
    """Select an (exam, class, subject) tuple; class_id None means all classes."""

    exam_id: int
    class_id: int | None = None
    subject_id: int


class CellEditRequest(BaseSchema):
    """Edit one field of one student's row."""

    student_id: int
    field: str = Field(..., description="'mark', 'absent' or a conduct dimension")
    value: float | bool | str | None = None


class PasteRequest(BaseSchema):
    """Paste a newline-delimited column of marks."""

    # Leading blank lines still consume rows
    model_config = ConfigDict(str_strip_whitespace=False)

    start_index: int = Field(0, ge=0)
    raw_text: str = Field(..., max_length=100_000)


# ==========================================
# Responses
# ==========================================

class SessionResponse(BaseSchema):
    """Dashboard session handle."""

    session_id: str
    teacher_id: int | None
    created_at: datetime


class SessionClosedResponse(BaseSchema):
    """Outcome of closing a dashboard; all_saved is False when some edits were lost."""

    session_id: str
    all_saved: bool


class RowsResponse(BaseSchema):
    """Rows for the active selection."""

    exam_id: int | None
    class_id: int | None
    subject_id: int | None
    state: SaveState
    last_error: str | None = None
    roster_source: Literal["snapshot", "live"] | None = None
    rows: list[ResultRow]


class SaveStatusResponse(BaseSchema):
    """Outcome of a manual save."""

    state: SaveState
    saved_rows: int
    last_error: str | None = None


class SubjectCompletion(BaseSchema):
    """How many roster students have something entered for a subject."""

    subject_id: int
    filled: int
    total: int
    ratio: float | None


class StudentCompletion(BaseSchema):
    """Per-student completion and grade histogram."""

    student_id: int
    student_name: str
    completed: int
    missing: int
    total: int
    missing_subject_ids: list[int]
    grade_counts: dict[str, int]


class CompletionSummary(BaseSchema):
    """Completion across the selected class and its subjects."""

    subjects: list[SubjectCompletion]
    students: list[StudentCompletion]


class StudentWeightedScore(BaseSchema):
    """Academic, conduct and final weighted score for one student."""

    student_id: int
    student_name: str
    class_id: int | None
    academic_average: float | None
    conduct_average: float | None
    conduct_weight: float | None
    final_score: float | None
    final_display: str


class SubjectAverage(BaseSchema):
    """Class average for one subject (comparison display only)."""

    subject_id: int
    average: float | None
    display: str


class WeightedSummary(BaseSchema):
    """Weighted scores for the selected class."""

    students: list[StudentWeightedScore]
    subject_averages: list[SubjectAverage]
    class_weighted_average: float | None
    class_weighted_display: str
