"""Excel export of a dashboard's rows and summaries."""

import logging
import re
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from results_engine.core.exceptions import ValidationError
from results_engine.schemas.exam import CONDUCT_DIMENSIONS
from results_engine.services.averages import format_score
from results_engine.services.session import ExamSession

logger = logging.getLogger(__name__)

# Styles
TITLE_FONT = Font(bold=True, size=14)
HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
TITLE_FILL = PatternFill(start_color="B4C6E7", end_color="B4C6E7", fill_type="solid")
MISSING_FILL = PatternFill(start_color="FCE4D6", end_color="FCE4D6", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)
CENTER_ALIGN = Alignment(horizontal='center', vertical='center')


def _title(ws, text: str, width: int) -> None:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=max(width, 1))
    cell = ws.cell(row=1, column=1, value=text)
    cell.font = TITLE_FONT
    cell.alignment = CENTER_ALIGN
    cell.fill = TITLE_FILL


def _headers(ws, headers: list[str], row: int = 2) -> None:
    for col_idx, header in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col_idx, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = THIN_BORDER
        cell.alignment = CENTER_ALIGN
        ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(header) + 4)


def _write_row(ws, row_idx: int, values: list, fill: PatternFill | None = None) -> None:
    for col_idx, value in enumerate(values, start=1):
        cell = ws.cell(row=row_idx, column=col_idx, value=value)
        cell.border = THIN_BORDER
        if fill:
            cell.fill = fill


def export_filename(session: ExamSession) -> str:
    key = session.active_key
    context = session.contexts.get((key.exam_id, key.class_id)) if key else None
    name = context.config.name if context else f"exam-{key.exam_id if key else 'none'}"
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower() or "exam"
    return f"{slug}-results.xlsx"


def build_results_workbook(session: ExamSession) -> bytes:
    """Export the active selection: rows, completion and weighted scores.

    Rows carry unsaved edits exactly as the dashboard shows them.
    """
    key = session.active_key
    if key is None:
        raise ValidationError("No exam, class and subject selected")
    context = session.contexts.get((key.exam_id, key.class_id))
    if context is None:
        raise ValidationError("Nothing loaded to export")

    config = context.config
    subject_name = config.subject_name(key.subject_id)
    class_label = "All classes" if key.class_id is None else f"Class {key.class_id}"

    wb = Workbook()

    # Results sheet
    ws = wb.active
    ws.title = "Results"
    headers = ["Student Name", "Class", "Mark", "Grade", "Status", *[
        dim.replace("_", " ").title() for dim in CONDUCT_DIMENSIONS
    ]]
    _title(ws, f"{config.name} - {subject_name} - {class_label}", len(headers))
    _headers(ws, headers)
    ws.column_dimensions['A'].width = 28
    for row_idx, row in enumerate(session.current_rows(), start=3):
        if row.opted_out:
            status = "Opted out"
        elif row.is_absent:
            status = "Absent"
        elif row.mark is None:
            status = "Missing"
        else:
            status = ""
        conduct = row.conduct.as_dict()
        _write_row(
            ws,
            row_idx,
            [
                row.student_name,
                row.class_id,
                row.mark,
                row.grade or "",
                status,
                *[conduct[dim] for dim in CONDUCT_DIMENSIONS],
            ],
            fill=MISSING_FILL if status == "Missing" else None,
        )
    ws.freeze_panes = "B3"

    # Completion sheet
    completion = session.completion_summary()
    cs = wb.create_sheet("Completion")
    subject_headers = [config.subject_name(s.subject_id) for s in completion.subjects]
    headers = ["Student Name", "Completed", "Missing", "Total", "Missing Subjects"]
    _title(cs, f"{config.name} - Completion", len(headers))
    _headers(cs, headers)
    cs.column_dimensions['A'].width = 28
    cs.column_dimensions['E'].width = 40
    row_idx = 3
    for student in completion.students:
        missing = ", ".join(config.subject_name(sid) for sid in student.missing_subject_ids)
        _write_row(
            cs,
            row_idx,
            [student.student_name, student.completed, student.missing, student.total, missing],
            fill=MISSING_FILL if student.missing else None,
        )
        row_idx += 1

    row_idx += 1
    _headers(cs, ["Subject", "Filled", "Total", "Completion %"], row=row_idx)
    for name, subject in zip(subject_headers, completion.subjects):
        row_idx += 1
        percent = subject.ratio * 100 if subject.ratio is not None else None
        _write_row(cs, row_idx, [name, subject.filled, subject.total, format_score(percent)])

    # Weighted sheet
    weighted = session.weighted_summary()
    ws_weighted = wb.create_sheet("Weighted")
    headers = ["Student Name", "Class", "Academic", "Conduct", "Conduct Weight %", "Final"]
    _title(ws_weighted, f"{config.name} - Weighted Scores", len(headers))
    _headers(ws_weighted, headers)
    ws_weighted.column_dimensions['A'].width = 28
    row_idx = 3
    for student in weighted.students:
        _write_row(
            ws_weighted,
            row_idx,
            [
                student.student_name,
                student.class_id,
                format_score(student.academic_average),
                format_score(student.conduct_average),
                student.conduct_weight,
                student.final_display,
            ],
        )
        row_idx += 1
    _write_row(
        ws_weighted,
        row_idx,
        ["Class average", "", "", "", "", weighted.class_weighted_display],
    )
    ws_weighted.cell(row=row_idx, column=1).font = Font(bold=True)

    for average in weighted.subject_averages:
        row_idx += 1
        _write_row(
            ws_weighted,
            row_idx,
            [f"{config.subject_name(average.subject_id)} average", "", average.display, "", "", ""],
        )

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    logger.info(f"Exported results workbook for {key}")
    return output.getvalue()
