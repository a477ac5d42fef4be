"""Manual seat edits made by admins.

Seat status follows a small state machine::

    Available <-> Allocated
    Available <-> Broken

An allocated seat has to be vacated before it can be marked broken, so a
student's allocation is never dropped as a side effect.
"""
import json
import logging

from seatplanner import config
from seatplanner.claims import check_room_open, current_seat
from seatplanner.concurrency import cas_update, get_or_404
from seatplanner.database import unit_of_work
from seatplanner.db_models import BuildingDB, RoomDB, SeatDB, StudentDB
from seatplanner.errors import (
    AlreadySeatedError,
    ConflictError,
    ExclusivityError,
    TransitionError,
    ValidationError,
)
from seatplanner.events import RoomUpdated, SeatUpdated, publish_all
from seatplanner.models import SeatStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    (SeatStatus.AVAILABLE, SeatStatus.ALLOCATED),
    (SeatStatus.ALLOCATED, SeatStatus.AVAILABLE),
    (SeatStatus.AVAILABLE, SeatStatus.BROKEN),
    (SeatStatus.BROKEN, SeatStatus.AVAILABLE),
}


def parse_status(value):
    try:
        return SeatStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown seat status {value!r}")


def check_transition(old, new):
    if (old, new) in ALLOWED_TRANSITIONS:
        return
    if old == new:
        raise TransitionError(f"Seat is already {old.value}")
    if old == SeatStatus.ALLOCATED and new == SeatStatus.BROKEN:
        raise TransitionError("Vacate the seat before marking it Broken")
    raise TransitionError(f"Cannot change seat from {old.value} to {new.value}")


def update_seat_status(db, seat_id, expected_version, status, student_id = None, bus = None):
    new = parse_status(status)

    with unit_of_work(db):
        seat = get_or_404(db, SeatDB, seat_id)
        if seat.version != expected_version:
            raise ConflictError(seat.as_dict(), entity = "seat")
        old = SeatStatus(seat.status)
        check_transition(old, new)
        room = seat.room
        branch = None
        claimed_delta = 0

        if new == SeatStatus.ALLOCATED:
            if student_id is None:
                raise ValidationError("student_id is required to allocate a seat")
            student = get_or_404(db, StudentDB, student_id)
            if current_seat(db, student_id) is not None:
                raise AlreadySeatedError()
            check_room_open(room, student)
            seat_values = {"status": new.value, "student_id": student_id}
            branch, claimed_delta = student.branch, 1
        elif old == SeatStatus.ALLOCATED:
            seat_values = {"status": new.value, "student_id": None}
            claimed_delta = -1
        else:
            seat_values = {"status": new.value}

        room_id = room.id
        seat = cas_update(db, SeatDB, seat_id, expected_version, **seat_values)
        seat_dict = seat.as_dict()
        room_dict = None
        if claimed_delta:
            room_dict = _count_seat_change(db, room_id, claimed_delta, branch)

    logger.info("Seat %s: %s -> %s", seat_id, old.value, new.value)
    events = [SeatUpdated(seat_dict)]
    if room_dict is not None:
        events.append(RoomUpdated(room_dict))
    publish_all(bus, events)
    return seat_dict


def _count_seat_change(db, room_id, delta, branch = None):
    # re-read under the seat write so the counter is current
    room = db.get(RoomDB, room_id, populate_existing = True)
    values = {"claimed": room.claimed + delta}
    if branch is not None:
        if room.branch_allocated not in (None, branch):
            raise ExclusivityError(f"Room {room.name} is allocated to {room.branch_allocated}")
        values["branch_allocated"] = branch
    try:
        return cas_update(db, RoomDB, room_id, room.version, **values).as_dict()
    except ConflictError as exc:
        raise ConflictError(
            exc.current,
            message = f"Room {room_id} changed while the seat was being updated. Refresh the room and try again.",
            entity = "room",
        )


def vacate_seat(db, seat_id, expected_version, bus = None):
    """Release an allocated seat back to Available."""
    seat = get_or_404(db, SeatDB, seat_id)
    if seat.status != SeatStatus.ALLOCATED.value or seat.student_id is None:
        raise TransitionError("Seat is not allocated")
    return update_seat_status(db, seat_id, expected_version, SeatStatus.AVAILABLE.value, bus = bus)


def update_seat_features(db, seat_id, expected_version, features, bus = None):
    unknown = sorted(set(features) - set(config.SEAT_FEATURES))
    if unknown:
        raise ValidationError("Unknown seat features", details = unknown)
    cleaned = list(dict.fromkeys(features))

    with unit_of_work(db):
        seat = cas_update(db, SeatDB, seat_id, expected_version, features_json = json.dumps(cleaned))
        seat_dict = seat.as_dict()

    publish_all(bus, [SeatUpdated(seat_dict)])
    return seat_dict


def list_allocations(db, student_id = None, room_id = None):
    query = (
        db.query(SeatDB, StudentDB, RoomDB, BuildingDB)
        .join(StudentDB, SeatDB.student_id == StudentDB.id)
        .join(RoomDB, SeatDB.room_id == RoomDB.id)
        .join(BuildingDB, RoomDB.building_id == BuildingDB.id)
        .filter(SeatDB.status == SeatStatus.ALLOCATED.value)
    )
    if student_id is not None:
        query = query.filter(SeatDB.student_id == student_id)
    if room_id is not None:
        query = query.filter(SeatDB.room_id == room_id)

    return [
        {
            "seat_id": seat.id,
            "seat_label": seat.label,
            "seat_version": seat.version,
            "student_id": student.id,
            "student_name": student.name,
            "branch": student.branch,
            "room_id": room.id,
            "room_name": room.name,
            "building_name": building.name,
        }
        for seat, student, room, building in query.order_by(RoomDB.id, SeatDB.row, SeatDB.col).all()
    ]
