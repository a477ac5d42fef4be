"""Self-service seat claiming.

A student asks for a seat in a room; the best available seat for their needs
is claimed through the version guard. A seat lost to another claimant is
skipped and the next-best remaining seat is tried inside the same
transaction, a bounded number of times.
"""
import logging

from sqlalchemy.exc import IntegrityError

from seatplanner import config
from seatplanner.allocator import available_seats, rank_seats
from seatplanner.concurrency import cas_update, get_or_404
from seatplanner.db_models import RoomDB, SeatDB, StudentDB
from seatplanner.errors import (
    AlreadySeatedError,
    CapacityExceededError,
    ClaimFailedError,
    ConflictError,
    ExclusivityError,
    ValidationError,
)
from seatplanner.events import RoomUpdated, SeatUpdated, publish_all
from seatplanner.models import SeatStatus

logger = logging.getLogger(__name__)

CLAIM_CONTENDED = "Other claimants kept taking the chosen seats, please retry"


def current_seat(db, student_id):
    return (
        db.query(SeatDB)
        .filter(SeatDB.student_id == student_id)
        .filter(SeatDB.status == SeatStatus.ALLOCATED.value)
        .first()
    )


def check_needs(needs):
    unknown = sorted(set(needs) - set(config.ACCESSIBILITY_NEEDS))
    if unknown:
        raise ValidationError("Unknown accessibility needs", details = unknown)


def check_room_open(room, student):
    if room.branch_allocated not in (None, student.branch):
        raise ExclusivityError(f"Room {room.name} is allocated to {room.branch_allocated}")


def find_and_claim(db, room_id, student_id, requested_needs = None, bus = None):
    """Claim the best available seat in ``room_id`` for ``student_id``.

    A lost seat stays out of the candidate list for the rest of the call. The
    transaction is kept open after a lost seat so the next read sees the
    winner's commit.
    """
    lost = set()
    try:
        for attempt in range(1, config.MAX_CLAIM_ATTEMPTS + 1):
            db.expire_all()
            room = get_or_404(db, RoomDB, room_id)
            student = get_or_404(db, StudentDB, student_id)
            needs = student.accessibility_needs if requested_needs is None else list(requested_needs)
            check_needs(needs)

            if current_seat(db, student_id) is not None:
                raise AlreadySeatedError()
            check_room_open(room, student)

            open_seats = available_seats(db, [room_id])
            if not open_seats:
                raise CapacityExceededError()
            candidates = [seat for seat in rank_seats(open_seats, needs) if seat.id not in lost]
            if not candidates:
                raise ClaimFailedError()
            seat = candidates[0]

            try:
                claimed = cas_update(
                    db, SeatDB, seat.id, seat.version,
                    status = SeatStatus.ALLOCATED.value,
                    student_id = student_id,
                )
            except ConflictError:
                lost.add(seat.id)
                logger.warning("Claim attempt %d for student %s lost seat %s", attempt, student_id, seat.label)
                continue

            # re-read under the seat write so the counter is current
            room = db.get(RoomDB, room_id, populate_existing = True)
            check_room_open(room, student)
            try:
                updated_room = cas_update(
                    db, RoomDB, room_id, room.version,
                    claimed = room.claimed + 1,
                    branch_allocated = student.branch,
                )
            except ConflictError:
                db.rollback()
                logger.warning("Claim attempt %d for student %s: room %s changed", attempt, student_id, room_id)
                continue

            seat_dict, room_dict = claimed.as_dict(), updated_room.as_dict()
            db.commit()

            logger.info("Student %s claimed seat %s in room %s", student_id, seat_dict["label"], room_id)
            publish_all(bus, [SeatUpdated(seat_dict), RoomUpdated(room_dict)])
            return seat_dict
    except IntegrityError:
        # seated elsewhere between the check and the write
        db.rollback()
        raise AlreadySeatedError()
    except Exception:
        db.rollback()
        raise

    db.rollback()
    logger.warning("Student %s gave up claiming in room %s after %d attempts", student_id, room_id, config.MAX_CLAIM_ATTEMPTS)
    raise ClaimFailedError(CLAIM_CONTENDED)
