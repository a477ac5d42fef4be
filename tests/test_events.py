"""Tests for the change-notification bus."""

from factories import make_building, make_room, seat_by_label
from seatplanner.events import EventBus, RoomDeleted, RoomUpdated, SeatsUpdated, SeatUpdated
from seatplanner.rooms import delete_room, update_room
from seatplanner.seats import update_seat_status


class TestEventBus:
    def test_handlers_get_only_their_type(self):
        bus = EventBus()
        seats, rooms = [], []
        bus.subscribe(SeatUpdated, seats.append)
        bus.subscribe(RoomUpdated, rooms.append)

        bus.publish(SeatUpdated({"id": 1}))

        assert seats == [SeatUpdated({"id": 1})]
        assert rooms == []

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(RoomDeleted, seen.append)
        unsubscribe()
        unsubscribe()

        bus.publish(RoomDeleted(3))
        assert seen == []

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("socket closed")

        bus.subscribe(SeatUpdated, broken)
        bus.subscribe(SeatUpdated, seen.append)

        bus.publish(SeatUpdated({"id": 7}))
        assert len(seen) == 1


class TestServiceEvents:
    def test_seat_and_room_events_on_status_change(self, db):
        building = make_building(db)
        room = make_room(db, building["id"], rows=1, cols=2, capacity=2)
        seat = seat_by_label(db, room["id"], "A1")
        bus = EventBus()
        seen = []
        for event_type in (SeatUpdated, RoomUpdated):
            bus.subscribe(event_type, seen.append)

        update_seat_status(db, seat.id, 1, "Broken", bus=bus)

        # no room counter moved, so only the seat is announced
        assert [type(e) for e in seen] == [SeatUpdated]
        assert seen[0].seat["status"] == "Broken"

    def test_regeneration_announces_new_seats(self, db):
        building = make_building(db)
        room = make_room(db, building["id"], rows=1, cols=2, capacity=2)
        bus = EventBus()
        seen = []
        bus.subscribe(SeatsUpdated, seen.append)

        update_room(db, room["id"], 1, capacity=1, bus=bus)

        assert len(seen) == 1
        assert [s["label"] for s in seen[0].seats] == ["A1"]

    def test_room_deleted(self, db):
        building = make_building(db)
        room = make_room(db, building["id"])
        bus = EventBus()
        seen = []
        bus.subscribe(RoomDeleted, seen.append)

        delete_room(db, room["id"], 1, bus=bus)

        assert seen == [RoomDeleted(room["id"])]
