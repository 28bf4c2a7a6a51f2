"""Roster resolution: who sits an exam, and in which class."""

import logging
from collections.abc import Iterable

from results_engine.schemas.exam import (
    NON_ENROLLED_RECORD_TYPES,
    ResolvedRoster,
    RosterEntry,
)
from results_engine.services.ledger import ExamLedger, load_ledger

logger = logging.getLogger(__name__)


def roster_sort_key(entry: RosterEntry) -> tuple[str, int]:
    return entry.student_name.casefold(), entry.student_id


class RosterResolver:
    """Resolve the authoritative student list for an exam/class.

    A roster snapshot, when the exam has one, is the only source of
    membership and class label, even if students have since changed
    class. Without a snapshot the live class table is used. Exclusions
    are subtracted from either source.
    """

    def __init__(self, store):
        self.store = store

    async def resolve(
        self,
        exam_id: int,
        class_id: int | None = None,
        *,
        ledger: ExamLedger | None = None,
        exam_class_ids: Iterable[int] | None = None,
    ) -> ResolvedRoster:
        """Resolve the roster, ordered by name then id.

        ``class_id`` None means every class of the exam; ``exam_class_ids``
        limits the live fallback to those classes.
        """
        snapshot = await self.store.fetch_snapshot_roster(exam_id)
        if snapshot:
            source = "snapshot"
            students = [
                s for s in snapshot
                if class_id is None or s.class_id == class_id
            ]
        else:
            source = "live"
            live = await self.store.fetch_live_roster(class_id)
            allowed_classes = set(exam_class_ids) if exam_class_ids is not None else None
            students = [
                s for s in live
                if s.record_type not in NON_ENROLLED_RECORD_TYPES
                and (class_id is not None or allowed_classes is None or s.class_id in allowed_classes)
            ]

        if ledger is None:
            ledger = await load_ledger(self.store, exam_id)

        resolved = []
        seen = set()
        for student in students:
            if student.student_id in seen:
                continue
            seen.add(student.student_id)
            if ledger.is_excluded(exam_id, class_id, student.student_id):
                continue
            resolved.append(student)
        resolved.sort(key=roster_sort_key)

        logger.debug(
            f"Resolved {len(resolved)} students for exam {exam_id} class {class_id} from {source}"
        )
        return ResolvedRoster(
            exam_id=exam_id,
            class_id=class_id,
            source=source,
            students=resolved,
        )
