import logging

from sqlalchemy import delete, select

from seatplanner.allocator import unseated_students
from seatplanner.concurrency import cas_delete, cas_update, get_or_404
from seatplanner.database import unit_of_work
from seatplanner.db_models import BuildingDB, FloorDB, RoomDB, SeatDB
from seatplanner.errors import ConflictError, TransitionError, ValidationError
from seatplanner.events import RoomDeleted, RoomUpdated, SeatsUpdated, publish_all
from seatplanner.layouts import replace_seats, validate_dimensions
from seatplanner.models import RegenerationResult, RoomUpdateResult

logger = logging.getLogger(__name__)

EDITABLE_ROOM_FIELDS = ("name", "rows", "cols", "capacity", "branch_allocated")
LAYOUT_FIELDS = ("rows", "cols", "capacity")


def create_building(db, name, code):
    existing = db.query(BuildingDB).filter(BuildingDB.code == code).first()
    if existing:
        raise ValidationError(f"Building code {code} already exists")

    with unit_of_work(db):
        building = BuildingDB(name = name, code = code)
        db.add(building)
        db.flush()
        data = building.as_dict()
    return data


def create_floor(db, building_id, name, number = 0):
    get_or_404(db, BuildingDB, building_id)
    with unit_of_work(db):
        floor = FloorDB(building_id = building_id, name = name, number = number)
        db.add(floor)
        db.flush()
        data = floor.as_dict()
    return data


def create_room(db, building_id, name, rows, cols, capacity, floor_id = None, bus = None):
    """Store a room together with its generated seats."""
    validate_dimensions(rows, cols, capacity)
    get_or_404(db, BuildingDB, building_id)
    if floor_id is not None:
        get_or_404(db, FloorDB, floor_id)

    with unit_of_work(db):
        room = RoomDB(
            building_id = building_id,
            floor_id = floor_id,
            name = name,
            rows = rows,
            cols = cols,
            capacity = capacity,
            claimed = 0,
            version = 1,
        )
        db.add(room)
        db.flush()
        seats, _ = replace_seats(db, room)
        result = RegenerationResult(room = room.as_dict(), seats = [s.as_dict() for s in seats])

    logger.info("Created room %s with %d seats", result.room["id"], len(result.seats))
    publish_all(bus, [RoomUpdated(result.room), SeatsUpdated(result.room["id"], result.seats)])
    return result


def update_room(db, room_id, expected_version, bus = None, **changes):
    """Edit a room under the version guard.

    A change to rows, cols or capacity regenerates every seat of the room in
    the same transaction; the result carries a warning and the ids of the
    students who lost their seat.
    """
    unknown = sorted(set(changes) - set(EDITABLE_ROOM_FIELDS))
    if unknown:
        raise ValidationError("Unknown room fields", details = unknown)

    with unit_of_work(db):
        room = get_or_404(db, RoomDB, room_id)
        if room.version != expected_version:
            raise ConflictError(room.as_dict(), entity = "room")
        regenerate = any(
            field in changes and changes[field] != getattr(room, field) for field in LAYOUT_FIELDS
        )
        if regenerate:
            validate_dimensions(
                changes.get("rows", room.rows),
                changes.get("cols", room.cols),
                changes.get("capacity", room.capacity),
            )

        branch_changed = (
            "branch_allocated" in changes and changes["branch_allocated"] != room.branch_allocated
        )
        if branch_changed and room.claimed > 0 and not regenerate:
            raise TransitionError("Vacate the room before changing its branch allocation")

        values = dict(changes)
        if regenerate:
            values["claimed"] = 0
        room = cas_update(db, RoomDB, room_id, expected_version, **values)

        seats, released = [], []
        if regenerate:
            seats, released = replace_seats(db, room)
        result = RoomUpdateResult(
            room = room.as_dict(),
            regenerated = regenerate,
            released_student_ids = released,
        )
        seat_dicts = [s.as_dict() for s in seats]

    if regenerate:
        result.warning = (
            f"Seat layout regenerated: {len(seat_dicts)} new seats, "
            f"{len(released)} allocated students lost their seats"
        )
        logger.warning("Room %s: %s", room_id, result.warning)

    events = [RoomUpdated(result.room)]
    if regenerate:
        events.append(SeatsUpdated(room_id, seat_dicts))
    publish_all(bus, events)
    return result


def delete_room(db, room_id, expected_version, bus = None):
    with unit_of_work(db):
        get_or_404(db, RoomDB, room_id)
        db.execute(
            delete(SeatDB)
            .where(SeatDB.room_id == room_id)
            .execution_options(synchronize_session = "fetch")
        )
        cas_delete(db, RoomDB, room_id, expected_version)

    logger.info("Deleted room %s", room_id)
    publish_all(bus, [RoomDeleted(room_id)])


def room_seats(db, room_id):
    get_or_404(db, RoomDB, room_id)
    seats = (
        db.query(SeatDB)
        .filter(SeatDB.room_id == room_id)
        .order_by(SeatDB.row, SeatDB.col)
        .all()
    )
    return [s.as_dict() for s in seats]


def eligible_branches(db, room_id = None, building_id = None):
    """Branches that could be allocated into a room or building right now."""
    if room_id is None and building_id is None:
        raise ValidationError("Either room_id or building_id must be provided")

    waiting = sorted({s.branch for s in unseated_students(db)})

    if room_id is not None:
        room = get_or_404(db, RoomDB, room_id)
        if room.branch_allocated:
            return [room.branch_allocated] if room.branch_allocated in waiting else []
        return waiting

    get_or_404(db, BuildingDB, building_id)
    elsewhere = set(
        db.execute(
            select(RoomDB.branch_allocated)
            .where(RoomDB.building_id != building_id)
            .where(RoomDB.branch_allocated.is_not(None))
            .distinct()
        ).scalars()
    )
    return [branch for branch in waiting if branch not in elsewhere]
