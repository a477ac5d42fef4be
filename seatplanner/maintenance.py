"""Operator checks: rooms without seats and ``claimed`` counters that drifted."""
import logging

from sqlalchemy import func, select

from seatplanner.db_models import RoomDB, SeatDB
from seatplanner.layouts import regenerate_room_seats
from seatplanner.models import RoomAudit, SeatStatus

logger = logging.getLogger(__name__)


def audit_rooms(db):
    seat_counts = dict(
        db.execute(select(SeatDB.room_id, func.count(SeatDB.id)).group_by(SeatDB.room_id)).all()
    )
    allocated_counts = dict(
        db.execute(
            select(SeatDB.room_id, func.count(SeatDB.id))
            .where(SeatDB.status == SeatStatus.ALLOCATED.value)
            .group_by(SeatDB.room_id)
        ).all()
    )

    audits = []
    for room in db.query(RoomDB).order_by(RoomDB.name, RoomDB.id).all():
        audit = RoomAudit(
            room_id = room.id,
            name = room.name,
            capacity = room.capacity,
            seat_count = seat_counts.get(room.id, 0),
            claimed = room.claimed,
            allocated = allocated_counts.get(room.id, 0),
        )
        if audit.seat_count == 0 and room.capacity > 0:
            audit.issues.append("no seats")
        if audit.claimed != audit.allocated:
            audit.issues.append(f"claimed {audit.claimed} but {audit.allocated} seats allocated")
        audits.append(audit)

    return audits


def fix_rooms_without_seats(db, bus = None):
    """Generate seats for every room that has capacity but no seats. Returns the fixed room ids."""
    fixed = []
    for audit in audit_rooms(db):
        if "no seats" not in audit.issues:
            continue
        room = db.get(RoomDB, audit.room_id)
        result = regenerate_room_seats(db, room.id, room.version, bus = bus)
        logger.info("Generated %d seats for room %s", len(result.seats), audit.name)
        fixed.append(audit.room_id)
    return fixed
