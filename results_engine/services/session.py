"""Dashboard edit session: draft cache and autosave coordination.

One ``ExamSession`` backs one open results dashboard. Every user action is
one method; the only suspension points are awaited store calls, so the
draft state never needs more than a per-selection lock to keep saves
serialized.
"""

import asyncio
import logging
import math
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import NamedTuple

from results_engine.core.config import settings
from results_engine.core.exceptions import (
    FetchError,
    MarkParseError,
    NotFoundError,
    SaveError,
    ValidationError,
)
from results_engine.core.scheduler import DebounceTimers
from results_engine.schemas.exam import (
    CONDUCT_DIMENSIONS,
    ConductCriterionSchema,
    ConductEntryRecord,
    ConductSaveItem,
    ConductScores,
    ExamConfig,
    ResolvedRoster,
    ResultSaveItem,
)
from results_engine.schemas.session import (
    CompletionSummary,
    DraftEdit,
    ResultRow,
    RowsResponse,
    SaveState,
    SaveStatusResponse,
    WeightedSummary,
)
from results_engine.services.averages import conduct_summary, summarize_weighted
from results_engine.services.completion import (
    EMPTY_CELL,
    CellState,
    subjects_for_student,
    summarize_completion,
)
from results_engine.services.grading import GradingScale, cell_grade, scale_or_default
from results_engine.services.ledger import ExamLedger, load_ledger
from results_engine.services.roster import RosterResolver
from results_engine.services.store import ResultsStore

logger = logging.getLogger(__name__)

ABSENT_TOKENS = frozenset({"th", "absent"})
CLEAR_TOKEN = "-"


class SelectionKey(NamedTuple):
    """(exam, class, subject) a dashboard is looking at; class None is all classes."""

    exam_id: int
    class_id: int | None
    subject_id: int

    def job_id(self, session_id: str) -> str:
        class_part = "all" if self.class_id is None else self.class_id
        return f"autosave:{session_id}:{self.exam_id}:{class_part}:{self.subject_id}"


# ==========================================
# Mark Parsing
# ==========================================

def parse_mark_token(token: str) -> CellState:
    """Parse one typed or pasted token into a cell.

    ``TH``/``absent`` mark the student absent, ``-`` clears the cell and a
    finite number in [0, 100] is a mark. Anything else raises
    MarkParseError.
    """
    token = token.strip()
    if not token:
        raise MarkParseError("Empty value")
    if token.lower() in ABSENT_TOKENS:
        return CellState(mark=None, is_absent=True)
    if token == CLEAR_TOKEN:
        return EMPTY_CELL
    try:
        value = float(token)
    except ValueError as e:
        raise MarkParseError(f"Not a number: {token!r}") from e
    return CellState(mark=validate_mark(value), is_absent=False)


def validate_mark(value: float) -> float:
    if not math.isfinite(value) or value < 0 or value > 100:
        raise MarkParseError(f"Mark out of range: {value}")
    return value


def split_paste(raw_text: str) -> list[str]:
    """Split a pasted column into tokens, one per line, first tab column only."""
    lines = raw_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line.split("\t", 1)[0] for line in lines]


# ==========================================
# Draft State
# ==========================================

class ExamContext:
    """Everything fetched for one (exam, class): config, roster and saved cells."""

    def __init__(
        self,
        config: ExamConfig,
        scale: GradingScale,
        ledger: ExamLedger,
        criteria: dict[str, ConductCriterionSchema],
        roster: ResolvedRoster,
        cells: dict[tuple[int, int], CellState],
        conduct: dict[tuple[int, int | None], ConductScores],
    ):
        self.config = config
        self.scale = scale
        self.ledger = ledger
        self.criteria = criteria
        self.roster = roster
        self.cells = cells
        self.conduct = conduct

    def subject_ids(self, class_id: int | None) -> list[int]:
        return self.config.subject_ids_for(class_id)


class TupleDraft:
    """Working copy of one selection's rows plus what has been saved.

    ``baseline`` holds the values last fetched or saved; a row is dirty
    when it differs from it. ``edits`` remembers which fields a user
    touched so a re-fetch only overwrites untouched ones.
    """

    def __init__(self, key: SelectionKey):
        self.key = key
        self.rows: dict[int, ResultRow] = {}
        self.order: list[int] = []
        self.baseline: dict[int, CellState] = {}
        self.conduct_baseline: dict[int, ConductScores] = {}
        self.edits: dict[int, DraftEdit] = {}
        self.state = SaveState.IDLE
        self.last_error: str | None = None
        self.fetch_error: str | None = None
        self.retry_armed = False
        self.loaded = False
        self.lock = asyncio.Lock()

    def cell(self, student_id: int) -> CellState:
        row = self.rows[student_id]
        return CellState(mark=row.mark, is_absent=row.is_absent)

    def is_cell_dirty(self, student_id: int) -> bool:
        row = self.rows[student_id]
        if row.opted_out:
            return False
        return self.cell(student_id) != self.baseline.get(student_id, EMPTY_CELL)

    def is_conduct_dirty(self, student_id: int) -> bool:
        baseline = self.conduct_baseline.get(student_id) or ConductScores()
        return self.rows[student_id].conduct.as_dict() != baseline.as_dict()

    def is_dirty(self, student_id: int) -> bool:
        return self.is_cell_dirty(student_id) or self.is_conduct_dirty(student_id)

    @property
    def has_changes(self) -> bool:
        return any(self.is_dirty(sid) for sid in self.order)

    def __repr__(self) -> str:
        return f"<TupleDraft({self.key}, state={self.state.value}, rows={len(self.order)})>"


# ==========================================
# Session
# ==========================================

class ExamSession:
    """Edit session for one open dashboard."""

    def __init__(
        self,
        store: ResultsStore,
        timers: DebounceTimers,
        session_id: str | None = None,
        teacher_id: int | None = None,
        debounce_seconds: float | None = None,
    ):
        self.store = store
        self.timers = timers
        self.session_id = session_id or uuid.uuid4().hex
        self.teacher_id = teacher_id
        self.debounce_seconds = (
            settings.AUTOSAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self.created_at = datetime.now(timezone.utc)
        self.last_activity = self.created_at
        self.active_key: SelectionKey | None = None
        self.drafts: dict[SelectionKey, TupleDraft] = {}
        self.contexts: dict[tuple[int, int | None], ExamContext] = {}
        self.closed = False
        self._selection_seq = 0
        self._snapshotted_exams: set[int] = set()

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValidationError("Dashboard session is closed")

    def _active_draft(self) -> TupleDraft:
        if self.active_key is None:
            raise ValidationError("No exam, class and subject selected")
        return self.drafts[self.active_key]

    def _context_for(self, key: SelectionKey) -> ExamContext | None:
        return self.contexts.get((key.exam_id, key.class_id))

    # ==========================================
    # Selection
    # ==========================================

    async def select_tuple(
        self, exam_id: int, class_id: int | None, subject_id: int
    ) -> list[ResultRow]:
        """Switch the dashboard to a selection and load its rows.

        Unsaved edits of the selection being left are flushed first; a
        fetch that completes after the user has moved on again is dropped.
        """
        self._ensure_open()
        self.touch()
        key = SelectionKey(exam_id, class_id, subject_id)
        outgoing = self.active_key
        self.active_key = key
        self.drafts.setdefault(key, TupleDraft(key))

        if outgoing is not None and outgoing != key:
            await self._flush(outgoing)

        await self._load(key)
        return self.current_rows()

    async def reload(self) -> list[ResultRow]:
        """Fetch the active selection again, keeping unsaved edits."""
        self._ensure_open()
        self.touch()
        draft = self._active_draft()
        await self._load(draft.key)
        return self.current_rows()

    async def _flush(self, key: SelectionKey) -> None:
        draft = self.drafts.get(key)
        if draft is None or not draft.has_changes:
            return
        self.timers.cancel(key.job_id(self.session_id))
        try:
            await self._save(key)
        except SaveError as e:
            logger.warning(f"Session {self.session_id}: flush of {key} failed, draft kept: {e.reason}")

    async def _load(self, key: SelectionKey) -> None:
        self._selection_seq += 1
        seq = self._selection_seq
        draft = self.drafts[key]

        try:
            config = await self.store.fetch_exam(key.exam_id)
            bands = await self.store.fetch_grading_scale(key.exam_id)
            criteria = await self.store.fetch_conduct_criteria()
            ledger = await load_ledger(self.store, key.exam_id)
            roster = await RosterResolver(self.store).resolve(
                key.exam_id,
                key.class_id,
                ledger=ledger,
                exam_class_ids=config.class_ids,
            )
            subject_ids = config.subject_ids_for(key.class_id)
            if key.subject_id not in subject_ids:
                raise ValidationError(
                    "Subject is not part of this exam",
                    details={"subject_id": key.subject_id},
                )
            cells: dict[tuple[int, int], CellState] = {}
            for subject_id in subject_ids:
                records = await self.store.fetch_subject_results(
                    key.exam_id, subject_id, roster.student_ids
                )
                for record in records:
                    cells[(record.student_id, subject_id)] = CellState(
                        mark=None if record.is_absent else record.mark,
                        is_absent=record.is_absent,
                    )
            conduct_entries = await self.store.fetch_conduct_entries(key.exam_id, self.teacher_id)
        except (NotFoundError, ValidationError):
            raise
        except Exception as e:
            if seq != self._selection_seq:
                logger.debug(f"Session {self.session_id}: ignoring failed stale fetch of {key}: {e}")
                return
            draft.loaded = False
            draft.fetch_error = str(e) or e.__class__.__name__
            logger.warning(f"Session {self.session_id}: fetch of {key} failed: {e}")
            raise FetchError(draft.fetch_error) from e

        if seq != self._selection_seq or self.active_key != key:
            logger.debug(f"Session {self.session_id}: discarding stale fetch of {key}")
            return

        context = ExamContext(
            config=config,
            scale=scale_or_default(bands),
            ledger=ledger,
            criteria={c.key: c for c in criteria},
            roster=roster,
            cells=cells,
            conduct={(e.student_id, e.subject_id): e.scores for e in conduct_entries},
        )
        self.contexts[(key.exam_id, key.class_id)] = context
        self._merge(draft, context)

    def _merge(self, draft: TupleDraft, context: ExamContext) -> None:
        """Rebuild draft rows from fresh data, reapplying the user's edits."""
        key = draft.key
        subject_ids = context.subject_ids(key.class_id)
        rows: dict[int, ResultRow] = {}
        order: list[int] = []
        baseline: dict[int, CellState] = {}
        conduct_baseline: dict[int, ConductScores] = {}

        for student in context.roster.students:
            own_subjects = subjects_for_student(student, subject_ids, context.config.class_subjects)
            if key.subject_id not in own_subjects:
                continue
            sid = student.student_id
            fresh = context.cells.get((sid, key.subject_id), EMPTY_CELL)
            fresh_conduct = context.conduct.get((sid, key.subject_id)) or ConductScores()
            opted_out = context.ledger.is_opted_out(sid, key.subject_id)
            baseline[sid] = fresh
            conduct_baseline[sid] = fresh_conduct

            mark, is_absent, conduct = fresh.mark, fresh.is_absent, fresh_conduct
            edit = draft.edits.get(sid)
            if edit is not None:
                touched = edit.model_fields_set
                if not opted_out and ("mark" in touched or "is_absent" in touched):
                    mark, is_absent = edit.mark, edit.is_absent
                if edit.conduct:
                    # Untouched dimensions keep their fresh values
                    conduct = fresh_conduct.model_copy(update=edit.conduct)

            rows[sid] = ResultRow(
                student_id=sid,
                student_name=student.student_name,
                class_id=student.class_id,
                mark=mark,
                is_absent=is_absent,
                opted_out=opted_out,
                conduct=conduct,
            )
            order.append(sid)

        draft.rows = rows
        draft.order = order
        draft.baseline = baseline
        draft.conduct_baseline = conduct_baseline
        draft.loaded = True
        draft.fetch_error = None
        for sid in order:
            self._refresh_row(draft, sid, context.scale)

        if draft.state != SaveState.SAVING:
            draft.state = SaveState.EDITING if draft.has_changes else SaveState.IDLE
            if draft.state == SaveState.IDLE:
                draft.last_error = None
        if draft.has_changes:
            self._arm(key)

    # ==========================================
    # Editing
    # ==========================================

    async def edit_cell(self, student_id: int, field: str, value) -> ResultRow:
        """Apply one edit to the active selection.

        ``field`` is ``mark``, ``absent`` or a conduct dimension. Values
        that do not parse are ignored and the row is returned unchanged.
        """
        self._ensure_open()
        self.touch()
        draft = self._active_draft()
        if not draft.loaded:
            raise ValidationError("Rows are not loaded for the current selection")
        if student_id not in draft.rows:
            raise NotFoundError("Student", student_id)
        context = self._context_for(draft.key)

        try:
            if field == "mark":
                changed = self._apply_mark(draft, student_id, value)
            elif field == "absent":
                changed = self._apply_absent(draft, student_id, value)
            elif field in CONDUCT_DIMENSIONS:
                changed = self._apply_conduct(draft, student_id, field, value, context)
            else:
                raise ValidationError(f"Unknown field: {field}")
        except MarkParseError as e:
            logger.debug(f"Session {self.session_id}: ignored value for student {student_id}: {e}")
            changed = False

        if changed:
            self._refresh_row(draft, student_id, context.scale)
            self._mark_editing(draft)
        return draft.rows[student_id].model_copy(deep=True)

    async def paste_column(self, start_index: int, raw_text: str) -> list[ResultRow]:
        """Paste a column of marks from ``start_index`` down.

        Unparseable lines are skipped but still consume a row; pasting
        stops at the last row.
        """
        self._ensure_open()
        self.touch()
        draft = self._active_draft()
        if not draft.loaded:
            raise ValidationError("Rows are not loaded for the current selection")
        context = self._context_for(draft.key)

        applied = 0
        for offset, token in enumerate(split_paste(raw_text)):
            index = start_index + offset
            if index >= len(draft.order):
                break
            student_id = draft.order[index]
            if draft.rows[student_id].opted_out:
                continue
            try:
                cell = parse_mark_token(token)
            except MarkParseError:
                continue
            if self._set_cell(draft, student_id, cell):
                self._refresh_row(draft, student_id, context.scale)
                applied += 1

        if applied:
            self._mark_editing(draft)
        logger.debug(f"Session {self.session_id}: pasted {applied} cells into {draft.key}")
        return self.current_rows()

    def _apply_mark(self, draft: TupleDraft, student_id: int, value) -> bool:
        if draft.rows[student_id].opted_out:
            return False
        if value is None or (isinstance(value, str) and not value.strip()):
            cell = EMPTY_CELL
        elif isinstance(value, str):
            cell = parse_mark_token(value)
        elif isinstance(value, bool):
            raise MarkParseError("Boolean is not a mark")
        else:
            cell = CellState(mark=validate_mark(float(value)), is_absent=False)
        return self._set_cell(draft, student_id, cell)

    def _apply_absent(self, draft: TupleDraft, student_id: int, value) -> bool:
        if draft.rows[student_id].opted_out:
            return False
        if isinstance(value, str):
            value = value.strip().lower() in {"true", "1", "yes", "th"}
        if value:
            return self._set_cell(draft, student_id, CellState(mark=None, is_absent=True))
        # Unchecking only clears an existing absence; a typed mark stays
        if not draft.rows[student_id].is_absent:
            return False
        return self._set_cell(draft, student_id, EMPTY_CELL)

    def _apply_conduct(
        self,
        draft: TupleDraft,
        student_id: int,
        dimension: str,
        value,
        context: ExamContext,
    ) -> bool:
        if isinstance(value, bool):
            raise MarkParseError("Boolean is not a conduct score")
        if isinstance(value, str):
            value = value.strip() or None
        if value is not None:
            try:
                value = float(value)
            except ValueError as e:
                raise MarkParseError(f"Not a number: {value!r}") from e
            criterion = context.criteria.get(dimension)
            maximum = (
                criterion.effective_max(settings.DEFAULT_CONDUCT_MAX_SCORE)
                if criterion
                else settings.DEFAULT_CONDUCT_MAX_SCORE
            )
            if not math.isfinite(value) or value < 0 or value > maximum:
                raise MarkParseError(f"Conduct score out of range: {value}")

        row = draft.rows[student_id]
        if getattr(row.conduct, dimension) == value:
            return False
        conduct = row.conduct.model_copy(update={dimension: value})
        row.conduct = conduct
        edit = draft.edits.setdefault(student_id, DraftEdit())
        edit.conduct = {**edit.conduct, dimension: value}
        return True

    def _set_cell(self, draft: TupleDraft, student_id: int, cell: CellState) -> bool:
        row = draft.rows[student_id]
        if CellState(row.mark, row.is_absent) == cell:
            return False
        row.mark = cell.mark
        row.is_absent = cell.is_absent
        edit = draft.edits.setdefault(student_id, DraftEdit())
        edit.mark = cell.mark
        edit.is_absent = cell.is_absent
        return True

    def _refresh_row(self, draft: TupleDraft, student_id: int, scale: GradingScale) -> None:
        row = draft.rows[student_id]
        row.grade = cell_grade(row.mark, row.is_absent, row.opted_out, scale)
        row.dirty = draft.is_dirty(student_id)

    def _mark_editing(self, draft: TupleDraft) -> None:
        if draft.state != SaveState.SAVING:
            draft.state = SaveState.EDITING
        draft.retry_armed = False
        self._arm(draft.key)

    # ==========================================
    # Autosave
    # ==========================================

    def _arm(self, key: SelectionKey) -> None:
        self.timers.schedule(
            key.job_id(self.session_id),
            self.debounce_seconds,
            self._debounce_tick,
            key,
        )

    async def _debounce_tick(self, key: SelectionKey) -> None:
        draft = self.drafts.get(key)
        if draft is None or self.closed:
            return
        if draft.lock.locked():
            # A save is still in flight; try again after it
            self._arm(key)
            return
        try:
            await self._save(key)
        except SaveError as e:
            logger.warning(f"Session {self.session_id}: autosave of {key} failed: {e.reason}")
            # One retry per burst of edits; after that it waits for the user
            if not draft.retry_armed:
                draft.retry_armed = True
                self._arm(key)

    async def save_now(self) -> SaveStatusResponse:
        """Save the active selection immediately."""
        self._ensure_open()
        self.touch()
        draft = self._active_draft()
        self.timers.cancel(draft.key.job_id(self.session_id))
        saved = await self._save(draft.key)
        return SaveStatusResponse(state=draft.state, saved_rows=saved, last_error=draft.last_error)

    async def _save(self, key: SelectionKey) -> int:
        """Persist the dirty rows of a selection; one save per selection at a time."""
        draft = self.drafts[key]
        async with draft.lock:
            if not draft.order:
                return 0
            result_items = [
                ResultSaveItem(
                    student_id=sid,
                    mark=draft.rows[sid].mark,
                    is_absent=draft.rows[sid].is_absent,
                )
                for sid in draft.order
                if draft.is_cell_dirty(sid)
            ]
            conduct_items = [
                ConductSaveItem(student_id=sid, scores=draft.rows[sid].conduct.model_copy())
                for sid in draft.order
                if draft.is_conduct_dirty(sid)
            ]
            if not result_items and not conduct_items:
                if draft.state == SaveState.EDITING:
                    draft.state = SaveState.IDLE
                return 0

            draft.state = SaveState.SAVING
            try:
                if result_items:
                    await self.store.save_results(
                        key.exam_id, key.subject_id, key.class_id, result_items
                    )
                if conduct_items:
                    await self.store.save_conduct_entries(
                        key.exam_id, key.class_id, key.subject_id, self.teacher_id, conduct_items
                    )
            except Exception as e:
                draft.state = SaveState.ERROR
                draft.last_error = str(e) or e.__class__.__name__
                raise SaveError(draft.last_error) from e

            self._commit_saved(draft, result_items, conduct_items)
            draft.state = SaveState.SAVED
            draft.last_error = None
            draft.retry_armed = False
            saved = len({item.student_id for item in [*result_items, *conduct_items]})
            logger.info(f"Session {self.session_id}: saved {saved} rows for {key}")

        await self._capture_snapshot(key)
        if draft.has_changes:
            # Edited again while the save was in flight
            draft.state = SaveState.EDITING
            self._arm(key)
        return saved

    def _commit_saved(
        self,
        draft: TupleDraft,
        result_items: Sequence[ResultSaveItem],
        conduct_items: Sequence[ConductSaveItem],
    ) -> None:
        key = draft.key
        context = self._context_for(key)
        for item in result_items:
            cell = CellState(mark=None if item.is_absent else item.mark, is_absent=item.is_absent)
            draft.baseline[item.student_id] = cell
            if context is not None:
                context.cells[(item.student_id, key.subject_id)] = cell
        for item in conduct_items:
            draft.conduct_baseline[item.student_id] = item.scores
            edit = draft.edits.get(item.student_id)
            if edit is not None:
                edit.conduct = {}
            if context is not None:
                context.conduct[(item.student_id, key.subject_id)] = item.scores

        scale = context.scale if context is not None else scale_or_default(None)
        for sid in draft.order:
            if not draft.is_dirty(sid):
                draft.edits.pop(sid, None)
            self._refresh_row(draft, sid, scale)

    async def _capture_snapshot(self, key: SelectionKey) -> None:
        """Freeze exam membership on its first successful save."""
        if key.exam_id in self._snapshotted_exams:
            return
        context = self._context_for(key)
        if context is None or context.roster.source == "snapshot":
            self._snapshotted_exams.add(key.exam_id)
            return
        try:
            captured = await self.store.capture_roster_snapshot(key.exam_id, context.config.class_ids)
        except Exception as e:
            # Retried after the next successful save
            logger.warning(f"Session {self.session_id}: roster snapshot for exam {key.exam_id} failed: {e}")
            return
        self._snapshotted_exams.add(key.exam_id)
        if captured:
            logger.info(f"Session {self.session_id}: captured {captured} roster rows for exam {key.exam_id}")

    # ==========================================
    # Views
    # ==========================================

    def current_rows(self) -> list[ResultRow]:
        """Rows of the active selection, in roster order."""
        if self.active_key is None:
            return []
        draft = self.drafts[self.active_key]
        if not draft.loaded:
            return []
        return [draft.rows[sid].model_copy(deep=True) for sid in draft.order]

    def rows_response(self) -> RowsResponse:
        key = self.active_key
        draft = self.drafts.get(key) if key else None
        context = self._context_for(key) if key else None
        return RowsResponse(
            exam_id=key.exam_id if key else None,
            class_id=key.class_id if key else None,
            subject_id=key.subject_id if key else None,
            state=draft.state if draft else SaveState.IDLE,
            last_error=(draft.fetch_error or draft.last_error) if draft else None,
            roster_source=context.roster.source if context and draft and draft.loaded else None,
            rows=self.current_rows(),
        )

    def _live_cells(self, key: SelectionKey, context: ExamContext) -> dict[tuple[int, int], CellState]:
        """Saved cells of an (exam, class) overlaid with every unsaved draft of it."""
        cells = dict(context.cells)
        for draft_key, draft in self.drafts.items():
            if (draft_key.exam_id, draft_key.class_id) != (key.exam_id, key.class_id):
                continue
            if not draft.order:
                continue
            for sid in draft.order:
                if draft_key == key or draft.is_cell_dirty(sid):
                    cells[(sid, draft_key.subject_id)] = draft.cell(sid)
        return cells

    def _live_conduct(self, key: SelectionKey, context: ExamContext) -> dict[int, ConductScores | None]:
        conduct = dict(context.conduct)
        for draft_key, draft in self.drafts.items():
            if (draft_key.exam_id, draft_key.class_id) != (key.exam_id, key.class_id):
                continue
            if not draft.order:
                continue
            for sid in draft.order:
                if draft.is_conduct_dirty(sid):
                    conduct[(sid, draft_key.subject_id)] = draft.rows[sid].conduct

        by_student: dict[int, list[ConductEntryRecord]] = {}
        for (sid, subject_id), scores in conduct.items():
            by_student.setdefault(sid, []).append(
                ConductEntryRecord(student_id=sid, subject_id=subject_id, scores=scores)
            )
        return {sid: conduct_summary(entries) for sid, entries in by_student.items()}

    def completion_summary(self) -> CompletionSummary:
        """Completion of the active exam/class over its subjects, unsaved edits included."""
        self.touch()
        draft = self._active_draft()
        context = self._context_for(draft.key)
        if context is None:
            return CompletionSummary(subjects=[], students=[])
        return summarize_completion(
            context.roster.students,
            context.subject_ids(draft.key.class_id),
            self._live_cells(draft.key, context),
            context.ledger,
            scale=context.scale,
            subjects_by_class=context.config.class_subjects,
        )

    def weighted_summary(self) -> WeightedSummary:
        """Weighted final scores of the active exam/class, unsaved edits included."""
        self.touch()
        draft = self._active_draft()
        context = self._context_for(draft.key)
        if context is None:
            return summarize_weighted([], [], {}, ExamLedger(draft.key.exam_id), {}, {})
        return summarize_weighted(
            context.roster.students,
            context.subject_ids(draft.key.class_id),
            self._live_cells(draft.key, context),
            context.ledger,
            self._live_conduct(draft.key, context),
            context.config.class_weights,
            criteria=context.criteria,
            subjects_by_class=context.config.class_subjects,
            default_conduct_max=settings.DEFAULT_CONDUCT_MAX_SCORE,
        )

    # ==========================================
    # Lifecycle
    # ==========================================

    async def close(self) -> bool:
        """Flush every dirty selection and stop autosaving.

        Returns False when some draft could not be saved; the failure is
        logged and the session is closed anyway.
        """
        if self.closed:
            return True
        all_saved = True
        for key, draft in list(self.drafts.items()):
            self.timers.cancel(key.job_id(self.session_id))
            if not draft.has_changes:
                continue
            try:
                await self._save(key)
            except SaveError as e:
                all_saved = False
                logger.error(f"Session {self.session_id}: unsaved edits for {key} lost on close: {e.reason}")
            self.timers.cancel(key.job_id(self.session_id))
        self.closed = True
        logger.info(f"Session {self.session_id} closed")
        return all_saved

    def __repr__(self) -> str:
        return f"<ExamSession(id={self.session_id}, active={self.active_key}, drafts={len(self.drafts)})>"
