"""Tests for operator audits."""

from sqlalchemy import delete, update

from factories import make_building, make_room, seats_of
from seatplanner.db_models import RoomDB, SeatDB
from seatplanner.maintenance import audit_rooms, fix_rooms_without_seats


class TestAuditRooms:
    def test_healthy_rooms(self, db):
        building = make_building(db)
        make_room(db, building["id"])

        audits = audit_rooms(db)

        assert len(audits) == 1
        assert audits[0].seat_count == 10
        assert audits[0].issues == []

    def test_flags_drift_and_missing_seats(self, db):
        building = make_building(db)
        drifted = make_room(db, building["id"], name="A")
        empty = make_room(db, building["id"], name="B")
        db.execute(update(RoomDB).where(RoomDB.id == drifted["id"]).values(claimed=2))
        db.execute(delete(SeatDB).where(SeatDB.room_id == empty["id"]))
        db.commit()

        audits = {a.room_id: a for a in audit_rooms(db)}

        assert audits[drifted["id"]].issues == ["claimed 2 but 0 seats allocated"]
        assert audits[empty["id"]].issues == ["no seats"]


class TestFixRoomsWithoutSeats:
    def test_regenerates_only_empty_rooms(self, db):
        building = make_building(db)
        healthy = make_room(db, building["id"], name="A")
        empty = make_room(db, building["id"], name="B", rows=2, cols=2, capacity=4)
        db.execute(delete(SeatDB).where(SeatDB.room_id == empty["id"]))
        db.commit()
        healthy_ids = [s.id for s in seats_of(db, healthy["id"])]

        fixed = fix_rooms_without_seats(db)

        assert fixed == [empty["id"]]
        assert len(seats_of(db, empty["id"])) == 4
        assert [s.id for s in seats_of(db, healthy["id"])] == healthy_ids
        assert audit_rooms(db)[1].issues == []
