import json
import logging

from sqlalchemy import delete, select

from seatplanner import config
from seatplanner.concurrency import cas_update, get_or_404
from seatplanner.database import unit_of_work
from seatplanner.db_models import RoomDB, SeatDB
from seatplanner.errors import ValidationError
from seatplanner.events import RoomUpdated, SeatsUpdated, publish_all
from seatplanner.models import RegenerationResult, SeatSpec, SeatStatus

logger = logging.getLogger(__name__)


def validate_dimensions(rows, cols, capacity):
    problems = []
    for name, value in (("rows", rows), ("cols", cols), ("capacity", capacity)):
        if not isinstance(value, int) or value < 0:
            problems.append(f"{name} must be a non-negative integer")
    if not problems and capacity > rows * cols:
        problems.append(f"capacity {capacity} exceeds rows x cols ({rows * cols})")
    if problems:
        raise ValidationError("Invalid room dimensions", details = problems)


def row_letter(row):
    # 0 -> A, 25 -> Z, 26 -> AA
    letters = ""
    n = row + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def column_banks(cols):
    """Split columns into banks separated by a center aisle.

    Returns inclusive ``(start, end)`` column ranges.
    """
    split = config.AISLE_AFTER_COLUMN
    if cols > split:
        return [(0, split - 1), (split, cols - 1)]
    if cols > 0:
        return [(0, cols - 1)]
    return []


def seat_features(row, col, cols, banks):
    start, end = next(bank for bank in banks if bank[0] <= col <= bank[1])
    features = []

    if row == 0:
        features.append("front_seat")
    if end - start + 1 >= 3 and start < col < end:
        features.append("middle_seat")
    if col in (0, cols - 1, start, end):
        features.append("aisle_seat")

    return tuple(features)


def generate_layout(rows, cols, capacity):
    """Seats in row-major order, truncated at ``capacity``."""
    validate_dimensions(rows, cols, capacity)
    banks = column_banks(cols)
    seats = []

    for row in range(rows):
        for col in range(cols):
            if len(seats) >= capacity:
                return seats
            seats.append(
                SeatSpec(
                    label = f"{row_letter(row)}{col + 1}",
                    row = row,
                    col = col,
                    features = seat_features(row, col, cols, banks),
                )
            )

    return seats


def replace_seats(db, room):
    """Drop every seat of ``room`` and store a fresh layout in the open transaction.

    Returns ``(seats, released_student_ids)``. The caller is responsible for
    resetting ``claimed`` through the version guard and for committing.
    """
    released = db.execute(
        select(SeatDB.student_id)
        .where(SeatDB.room_id == room.id)
        .where(SeatDB.status == SeatStatus.ALLOCATED.value)
        .order_by(SeatDB.student_id)
    ).scalars().all()

    db.execute(
        delete(SeatDB)
        .where(SeatDB.room_id == room.id)
        .execution_options(synchronize_session = "fetch")
    )

    seats = [
        SeatDB(
            room_id = room.id,
            label = spec.label,
            row = spec.row,
            col = spec.col,
            features_json = json.dumps(list(spec.features)),
            status = SeatStatus.AVAILABLE.value,
            student_id = None,
            version = 1,
        )
        for spec in generate_layout(room.rows, room.cols, room.capacity)
    ]
    db.add_all(seats)
    db.flush()

    return seats, [sid for sid in released if sid is not None]


def regenerate_room_seats(db, room_id, expected_version, bus = None):
    """Rebuild a room's seat layout from its current rows/cols/capacity.

    Destructive: allocated students lose their seats and ``claimed`` drops to
    zero. The released student ids are returned so callers can warn about it.
    """
    with unit_of_work(db):
        room = get_or_404(db, RoomDB, room_id)
        validate_dimensions(room.rows, room.cols, room.capacity)
        room = cas_update(db, RoomDB, room_id, expected_version, claimed = 0)
        seats, released = replace_seats(db, room)
        result = RegenerationResult(
            room = room.as_dict(),
            seats = [s.as_dict() for s in seats],
            released_student_ids = released,
        )

    if released:
        logger.warning("Regenerating room %s released %d allocated students", room_id, len(released))
    logger.info("Generated %d seats for room %s", len(result.seats), room_id)

    publish_all(bus, [SeatsUpdated(room_id, result.seats), RoomUpdated(result.room)])
    return result
