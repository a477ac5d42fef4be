"""Branch allocation: seat a whole cohort inside a room or a building.

Planning is pure and happens in memory; applying the plan is done one room
per transaction through the version guard. A room that changed underneath
the plan is rolled back and its students are planned again, a bounded
number of times.
"""
import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from seatplanner import config
from seatplanner.concurrency import cas_update, get_or_404
from seatplanner.database import unit_of_work
from seatplanner.db_models import BuildingDB, RoomDB, SeatDB, StudentDB
from seatplanner.errors import ConflictError, ValidationError
from seatplanner.events import RoomUpdated, SeatsUpdated, publish_all
from seatplanner.models import AllocationSummary, SeatStatus, UnplacedStudent

logger = logging.getLogger(__name__)

NO_SEATS_IN_SCOPE = "No seats available in scope"
NO_ELIGIBLE_ROOMS = "No eligible rooms for this branch"
SEAT_MAP_CHANGED = "Seat map changed during allocation, retry"


def needs_match(features, needs):
    return len(set(features) & set(needs))


def seat_rank_key(seat, needs):
    # best match first, then room, row, column
    return (-needs_match(seat.features, needs), seat.room_id, seat.row, seat.col)


def rank_seats(seats, needs):
    return sorted(seats, key = lambda seat: seat_rank_key(seat, needs))


def seating_order(students):
    # students who asked for a need pick first, ties by id
    return sorted(students, key = lambda s: (not s.accessibility_needs, s.id))


def plan_assignments(students, seats):
    """Greedy matching of students (in the given order) to their best remaining seat.

    Returns ``(assignments, unplaced)`` where assignments is a list of
    ``(student, seat)`` pairs.
    """
    remaining = list(seats)
    assignments = []
    unplaced = []

    for student in students:
        if not remaining:
            unplaced.append(student)
            continue
        needs = student.accessibility_needs
        best = min(remaining, key = lambda seat: seat_rank_key(seat, needs))
        remaining.remove(best)
        assignments.append((student, best))

    return assignments, unplaced


def unseated_students(db, branch = None, student_ids = None):
    seated = select(SeatDB.student_id).where(
        SeatDB.status == SeatStatus.ALLOCATED.value,
        SeatDB.student_id.is_not(None),
    )
    query = select(StudentDB).where(StudentDB.id.not_in(seated))
    if branch is not None:
        query = query.where(StudentDB.branch == branch)
    if student_ids is not None:
        query = query.where(StudentDB.id.in_(student_ids))
    return db.execute(query.order_by(StudentDB.id)).scalars().all()


def available_seats(db, room_ids):
    if not room_ids:
        return []
    return db.execute(
        select(SeatDB)
        .where(SeatDB.room_id.in_(room_ids))
        .where(SeatDB.status == SeatStatus.AVAILABLE.value)
        .order_by(SeatDB.room_id, SeatDB.row, SeatDB.col)
    ).scalars().all()


def snapshot_plan(assignments, rooms):
    """Freeze a plan into plain ids and the versions it was computed from.

    ORM objects reload fresh state after every commit, so versions are
    captured here before the first room is written.
    """
    by_room = defaultdict(list)
    for student, seat in assignments:
        by_room[seat.room_id].append((student.id, seat.id, seat.version))
    room_state = {rid: (rooms[rid].version, rooms[rid].claimed) for rid in by_room}
    return by_room, room_state


def apply_room_plan(db, room_id, room_state, branch, batch):
    """Write one room's share of a plan as a single transaction.

    Returns the committed ``(room, seats)`` snapshots, or ``None`` if the room
    or one of its seats changed since the plan was made.
    """
    room_version, room_claimed = room_state
    try:
        with unit_of_work(db):
            seats = [
                cas_update(
                    db, SeatDB, seat_id, seat_version,
                    status = SeatStatus.ALLOCATED.value,
                    student_id = student_id,
                )
                for student_id, seat_id, seat_version in batch
            ]
            room = cas_update(
                db, RoomDB, room_id, room_version,
                claimed = room_claimed + len(seats),
                branch_allocated = branch,
            )
            return room.as_dict(), [seat.as_dict() for seat in seats]
    except ConflictError:
        logger.warning("Room %s changed during allocation; re-planning %d students", room_id, len(batch))
    except IntegrityError:
        # a student in this batch was seated somewhere else meanwhile
        logger.warning("Room %s batch hit a concurrent seating; re-planning", room_id)
    return None


def place_students(db, branch, students, room_ids, bus = None):
    """Plan and apply placements for ``students`` over the rooms ``room_ids``.

    Returns ``(placed_count, unplaced, contended)``: ``unplaced`` ran out of
    seats, ``contended`` lost every round to concurrent writers.
    """
    placed = 0
    pending = [s.id for s in students]
    unplaced = []

    for round_no in range(config.MAX_ALLOCATION_ROUNDS):
        db.expire_all()
        todo = seating_order(unseated_students(db, student_ids = pending))
        if not todo:
            return placed, unplaced, []

        rooms = {
            room.id: room
            for room in db.execute(select(RoomDB).where(RoomDB.id.in_(room_ids))).scalars()
            if room.branch_allocated in (None, branch)
        }
        assignments, no_seat = plan_assignments(todo, available_seats(db, list(rooms)))
        unplaced.extend(no_seat)
        by_room, room_state = snapshot_plan(assignments, rooms)

        pending = []
        events = []
        for room_id in sorted(by_room):
            batch = by_room[room_id]
            applied = apply_room_plan(db, room_id, room_state[room_id], branch, batch)
            if applied is None:
                pending.extend(student_id for student_id, _, _ in batch)
                continue
            room_dict, seat_dicts = applied
            placed += len(seat_dicts)
            events.extend([SeatsUpdated(room_id, seat_dicts), RoomUpdated(room_dict)])

        publish_all(bus, events)
        if not pending:
            return placed, unplaced, []
        logger.info("Allocation round %d left %d students to re-plan", round_no + 1, len(pending))

    contended = unseated_students(db, student_ids = pending)
    logger.warning("Gave up on %d students after %d rounds", len(contended), config.MAX_ALLOCATION_ROUNDS)
    return placed, unplaced, contended


def scope_rooms(db, room_id = None, building_id = None):
    if (room_id is None) == (building_id is None):
        raise ValidationError("Either room_id or building_id must be provided")
    if room_id is not None:
        return [get_or_404(db, RoomDB, room_id)]
    get_or_404(db, BuildingDB, building_id)
    return db.execute(
        select(RoomDB).where(RoomDB.building_id == building_id).order_by(RoomDB.id)
    ).scalars().all()


def allocate_branch(db, branch, room_id = None, building_id = None, bus = None):
    """Seat every unseated student of ``branch`` inside one room or one building."""
    if not branch:
        raise ValidationError("branch is required")

    rooms = scope_rooms(db, room_id = room_id, building_id = building_id)
    eligible = [r.id for r in rooms if r.branch_allocated in (None, branch)]
    excluded = [r.id for r in rooms if r.branch_allocated not in (None, branch)]
    for rid in excluded:
        logger.info("Room %s is allocated to another branch; excluded from %s run", rid, branch)

    students = unseated_students(db, branch = branch)
    summary = AllocationSummary(branch_allocated = branch, rooms_excluded = excluded)

    if not eligible:
        summary.unallocated_students = [
            UnplacedStudent(s.as_dict(), NO_ELIGIBLE_ROOMS) for s in students
        ]
    elif students:
        placed, unplaced, contended = place_students(db, branch, students, eligible, bus = bus)
        summary.allocated_count = placed
        summary.unallocated_students = (
            [UnplacedStudent(s.as_dict(), NO_SEATS_IN_SCOPE) for s in unplaced]
            + [UnplacedStudent(s.as_dict(), SEAT_MAP_CHANGED) for s in contended]
        )

    summary.unallocated_count = len(summary.unallocated_students)
    _fill_scope_totals(db, summary, branch, eligible)
    db.commit()

    logger.info(
        "Allocated %d students of %s (%d left unplaced)",
        summary.allocated_count, branch, summary.unallocated_count,
    )
    return summary


def _fill_scope_totals(db, summary, branch, room_ids):
    db.expire_all()
    if not room_ids:
        return

    counts = dict(
        db.execute(
            select(SeatDB.status, func.count(SeatDB.id))
            .where(SeatDB.room_id.in_(room_ids))
            .group_by(SeatDB.status)
        ).all()
    )
    allocated = counts.get(SeatStatus.ALLOCATED.value, 0)
    usable = allocated + counts.get(SeatStatus.AVAILABLE.value, 0)

    summary.available_seats_after_allocation = counts.get(SeatStatus.AVAILABLE.value, 0)
    summary.utilization = round(allocated / usable * 100, 2) if usable else 0.0
    summary.rooms_allocated = db.execute(
        select(RoomDB.id)
        .where(RoomDB.id.in_(room_ids))
        .where(RoomDB.branch_allocated == branch)
        .order_by(RoomDB.id)
    ).scalars().all()
