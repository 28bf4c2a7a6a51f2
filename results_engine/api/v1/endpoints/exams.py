"""Read-only exam lookups: resolved roster and grading scale."""

import logging

from fastapi import APIRouter, Query

from results_engine.core.dependencies import StoreDep
from results_engine.core.exceptions import AppException, FetchError
from results_engine.schemas.common import ErrorResponse
from results_engine.schemas.exam import GradeBandSchema, GradingScaleResponse, ResolvedRoster
from results_engine.services.grading import scale_or_default
from results_engine.services.roster import RosterResolver

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/{exam_id}/roster",
    response_model=ResolvedRoster,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def get_exam_roster(
    exam_id: int,
    store: StoreDep,
    class_id: int | None = Query(None, description="Omit for every class of the exam"),
):
    """
    Resolve who sits an exam.
    Uses the roster snapshot when one exists, otherwise the live class lists,
    minus exclusions.
    """
    try:
        exam = await store.fetch_exam(exam_id)
        return await RosterResolver(store).resolve(exam_id, class_id, exam_class_ids=exam.class_ids)
    except AppException:
        raise
    except Exception as e:
        logger.warning(f"Roster lookup for exam {exam_id} failed: {e}")
        raise FetchError(str(e) or e.__class__.__name__) from e


@router.get(
    "/{exam_id}/grading-scale",
    response_model=GradingScaleResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def get_grading_scale(exam_id: int, store: StoreDep):
    """Grading scale in effect for an exam; the built-in scale when none is configured."""
    try:
        await store.fetch_exam(exam_id)
        bands = await store.fetch_grading_scale(exam_id)
    except AppException:
        raise
    except Exception as e:
        logger.warning(f"Grading scale lookup for exam {exam_id} failed: {e}")
        raise FetchError(str(e) or e.__class__.__name__) from e

    scale = scale_or_default(bands)
    return GradingScaleResponse(
        exam_id=exam_id,
        is_default=scale.is_default,
        bands=[GradeBandSchema(label=b.label, min_mark=b.min_mark) for b in scale.bands],
    )
