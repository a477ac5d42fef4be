"""Shrink the unseated backlog without moving anyone who already has a seat."""
import logging
from itertools import groupby

from sqlalchemy import select

from seatplanner.allocator import SEAT_MAP_CHANGED, place_students, unseated_students
from seatplanner.db_models import RoomDB
from seatplanner.models import RebalanceSummary, UnplacedStudent

logger = logging.getLogger(__name__)

NO_BRANCH_ROOM = "No room is allocated to this branch"
NO_BRANCH_CAPACITY = "No branch-matching room with capacity"


def rebalance(db, bus = None):
    summary = RebalanceSummary()
    students = sorted(unseated_students(db), key = lambda s: (s.branch, s.id))
    cohorts = [(branch, list(group)) for branch, group in groupby(students, key = lambda s: s.branch)]
    unassigned = []

    for branch, cohort in cohorts:
        room_ids = db.execute(
            select(RoomDB.id).where(RoomDB.branch_allocated == branch).order_by(RoomDB.id)
        ).scalars().all()

        if not room_ids:
            unassigned.extend((s.id, UnplacedStudent(s.as_dict(), NO_BRANCH_ROOM)) for s in cohort)
            continue

        placed, unplaced, contended = place_students(db, branch, cohort, room_ids, bus = bus)
        summary.reallocated_count += placed
        unassigned.extend((s.id, UnplacedStudent(s.as_dict(), NO_BRANCH_CAPACITY)) for s in unplaced)
        unassigned.extend((s.id, UnplacedStudent(s.as_dict(), SEAT_MAP_CHANGED)) for s in contended)

    db.commit()
    summary.still_unassigned = [entry for _, entry in sorted(unassigned, key = lambda pair: pair[0])]
    summary.still_unassigned_count = len(summary.still_unassigned)

    logger.info(
        "Rebalance seated %d students, %d still unassigned",
        summary.reallocated_count, summary.still_unassigned_count,
    )
    return summary
