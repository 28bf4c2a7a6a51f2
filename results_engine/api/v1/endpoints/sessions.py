"""Dashboard session endpoints: selection, editing, autosave and summaries."""

from io import BytesIO

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from results_engine.core.dependencies import RegistryDep, SessionDep
from results_engine.schemas.common import ErrorResponse
from results_engine.schemas.session import (
    CellEditRequest,
    CompletionSummary,
    PasteRequest,
    ResultRow,
    RowsResponse,
    SaveStatusResponse,
    SelectionRequest,
    SessionClosedResponse,
    SessionCreate,
    SessionResponse,
    WeightedSummary,
)
from results_engine.services.export import build_results_workbook, export_filename

router = APIRouter()

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def open_session(request: SessionCreate, registry: RegistryDep):
    """Open a dashboard session."""
    session = registry.create(teacher_id=request.teacher_id)
    return SessionResponse(
        session_id=session.session_id,
        teacher_id=session.teacher_id,
        created_at=session.created_at,
    )


@router.delete("/{session_id}", response_model=SessionClosedResponse, responses=ERROR_RESPONSES)
async def close_session(session_id: str, registry: RegistryDep):
    """
    Close a dashboard session.
    Unsaved edits are flushed first; edits that still fail to save are lost.
    """
    all_saved = await registry.close(session_id)
    return SessionClosedResponse(session_id=session_id, all_saved=all_saved)


@router.put("/{session_id}/selection", response_model=RowsResponse, responses=ERROR_RESPONSES)
async def select_tuple(request: SelectionRequest, session: SessionDep):
    """
    Switch to an exam, class and subject.
    Dirty rows of the previous selection are saved before switching.
    """
    await session.select_tuple(request.exam_id, request.class_id, request.subject_id)
    return session.rows_response()


@router.post("/{session_id}/reload", response_model=RowsResponse, responses=ERROR_RESPONSES)
async def reload_selection(session: SessionDep):
    """Fetch the current selection again, keeping unsaved edits."""
    await session.reload()
    return session.rows_response()


@router.get("/{session_id}/rows", response_model=RowsResponse, responses=ERROR_RESPONSES)
async def get_rows(session: SessionDep):
    """Rows of the current selection with their autosave state."""
    return session.rows_response()


@router.patch("/{session_id}/cells", response_model=ResultRow, responses=ERROR_RESPONSES)
async def edit_cell(request: CellEditRequest, session: SessionDep):
    """
    Edit one cell.
    Grades update immediately; the save follows after the debounce delay.
    """
    return await session.edit_cell(request.student_id, request.field, request.value)


@router.post("/{session_id}/paste", response_model=RowsResponse, responses=ERROR_RESPONSES)
async def paste_column(request: PasteRequest, session: SessionDep):
    """Paste a newline-separated column of marks starting at a row."""
    await session.paste_column(request.start_index, request.raw_text)
    return session.rows_response()


@router.post("/{session_id}/save", response_model=SaveStatusResponse, responses=ERROR_RESPONSES)
async def save_now(session: SessionDep):
    """Save the current selection without waiting for the debounce."""
    return await session.save_now()


@router.get("/{session_id}/completion", response_model=CompletionSummary, responses=ERROR_RESPONSES)
async def completion_summary(session: SessionDep):
    """Filled/total per subject and missing subjects per student."""
    return session.completion_summary()


@router.get("/{session_id}/weighted", response_model=WeightedSummary, responses=ERROR_RESPONSES)
async def weighted_summary(session: SessionDep):
    """Academic, conduct and weighted final scores."""
    return session.weighted_summary()


@router.get("/{session_id}/export", responses=ERROR_RESPONSES)
async def export_results(session: SessionDep):
    """Download the current selection as an Excel workbook."""
    content = build_results_workbook(session)
    filename = export_filename(session)
    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
