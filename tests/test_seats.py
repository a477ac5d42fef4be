"""Tests for manual seat edits."""

import pytest

import seatplanner.seats as seats_module
from factories import assert_consistent, fresh_room, make_building, make_room, make_student, seat_by_label
from seatplanner.claims import find_and_claim
from seatplanner.db_models import RoomDB
from seatplanner.errors import (
    AlreadySeatedError,
    ConflictError,
    ExclusivityError,
    TransitionError,
    ValidationError,
)
from seatplanner.seats import list_allocations, update_seat_features, update_seat_status, vacate_seat


def setup_room(db):
    building = make_building(db)
    return make_room(db, building["id"], rows=1, cols=4, capacity=4)


class TestSeatStatus:
    def test_admin_assigns_student(self, db):
        room = setup_room(db)
        student = make_student(db, "ana", branch="X")
        seat = seat_by_label(db, room["id"], "A3")

        updated = update_seat_status(db, seat.id, 1, "Allocated", student_id=student["id"])

        assert updated["status"] == "Allocated"
        assert updated["student_id"] == student["id"]
        assert fresh_room(db, room["id"]).claimed == 1
        assert fresh_room(db, room["id"]).branch_allocated == "X"
        assert_consistent(db)

    def test_allocating_needs_a_student(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        with pytest.raises(ValidationError):
            update_seat_status(db, seat.id, 1, "Allocated")

    def test_student_cannot_hold_two_seats(self, db):
        room = setup_room(db)
        student = make_student(db, "ben", branch="X")
        find_and_claim(db, room["id"], student["id"])
        seat = seat_by_label(db, room["id"], "A4")

        with pytest.raises(AlreadySeatedError):
            update_seat_status(db, seat.id, 1, "Allocated", student_id=student["id"])

    def test_branch_exclusivity_applies_to_admins(self, db):
        room = setup_room(db)
        find_and_claim(db, room["id"], make_student(db, "cat", branch="X")["id"])
        other = make_student(db, "dan", branch="Y")
        seat = seat_by_label(db, room["id"], "A4")

        with pytest.raises(ExclusivityError):
            update_seat_status(db, seat.id, 1, "Allocated", student_id=other["id"])

    def test_break_and_repair(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")

        broken = update_seat_status(db, seat.id, 1, "Broken")
        repaired = update_seat_status(db, seat.id, broken["version"], "Available")

        assert broken["status"] == "Broken"
        assert repaired["status"] == "Available"
        assert repaired["version"] == 3
        assert fresh_room(db, room["id"]).claimed == 0

    def test_allocated_seat_cannot_break(self, db):
        room = setup_room(db)
        seat = find_and_claim(db, room["id"], make_student(db, "eli", branch="X")["id"])

        with pytest.raises(TransitionError) as exc:
            update_seat_status(db, seat["id"], seat["version"], "Broken")

        assert "Vacate" in exc.value.message
        assert seat_by_label(db, room["id"], seat["label"]).status == "Allocated"
        assert fresh_room(db, room["id"]).claimed == 1

    def test_broken_seat_cannot_be_allocated(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        broken = update_seat_status(db, seat.id, 1, "Broken")
        student = make_student(db, "fox", branch="X")

        with pytest.raises(TransitionError):
            update_seat_status(db, seat.id, broken["version"], "Allocated", student_id=student["id"])

    def test_same_status_rejected(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        with pytest.raises(TransitionError):
            update_seat_status(db, seat.id, 1, "Available")

    def test_unknown_status(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        with pytest.raises(ValidationError):
            update_seat_status(db, seat.id, 1, "Blocked")

    def test_stale_version_wins_over_transition_rules(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        update_seat_status(db, seat.id, 1, "Broken")

        with pytest.raises(ConflictError) as exc:
            update_seat_status(db, seat.id, 1, "Broken")
        assert exc.value.current["status"] == "Broken"
        assert exc.value.current["version"] == 2
        assert exc.value.entity == "seat"

    def test_claim_elsewhere_in_room_does_not_block_admin(self, db):
        room = setup_room(db)
        find_and_claim(db, room["id"], make_student(db, "ora", branch="X")["id"])
        student = make_student(db, "pat", branch="X")
        seat = seat_by_label(db, room["id"], "A4")

        updated = update_seat_status(db, seat.id, seat.version, "Allocated", student_id=student["id"])

        assert updated["student_id"] == student["id"]
        assert fresh_room(db, room["id"]).claimed == 2
        assert_consistent(db)

    def test_room_conflict_names_the_room(self, db, monkeypatch):
        room = setup_room(db)
        student = make_student(db, "quinn", branch="X")
        seat = seat_by_label(db, room["id"], "A1")
        real_cas = seats_module.cas_update

        def stale_room_cas(session, model, entity_id, expected_version, **values):
            if model is RoomDB:
                expected_version -= 1
            return real_cas(session, model, entity_id, expected_version, **values)

        monkeypatch.setattr(seats_module, "cas_update", stale_room_cas)

        with pytest.raises(ConflictError) as exc:
            update_seat_status(db, seat.id, 1, "Allocated", student_id=student["id"])

        assert exc.value.entity == "room"
        assert exc.value.current["id"] == room["id"]
        assert "Room" in exc.value.message
        assert exc.value.as_dict()["entity"] == "room"
        assert seat_by_label(db, room["id"], "A1").status == "Available"
        assert seat_by_label(db, room["id"], "A1").version == 1
        assert fresh_room(db, room["id"]).claimed == 0


class TestVacate:
    def test_vacate_frees_seat_and_count(self, db):
        room = setup_room(db)
        student = make_student(db, "gil", branch="X")
        seat = find_and_claim(db, room["id"], student["id"])

        vacated = vacate_seat(db, seat["id"], seat["version"])

        assert vacated["status"] == "Available"
        assert vacated["student_id"] is None
        assert fresh_room(db, room["id"]).claimed == 0
        # exclusivity outlives the last student
        assert fresh_room(db, room["id"]).branch_allocated == "X"
        assert_consistent(db)

    def test_vacate_requires_allocation(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        with pytest.raises(TransitionError):
            vacate_seat(db, seat.id, 1)


class TestSeatFeatures:
    def test_features_deduplicated(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")

        updated = update_seat_features(db, seat.id, 1, ["near_exit", "wheelchair_access", "near_exit"])

        assert updated["features"] == ["near_exit", "wheelchair_access"]
        assert updated["version"] == 2

    def test_unknown_feature(self, db):
        room = setup_room(db)
        seat = seat_by_label(db, room["id"], "A1")
        with pytest.raises(ValidationError):
            update_seat_features(db, seat.id, 1, ["window"])


class TestListAllocations:
    def test_filters(self, db):
        room = setup_room(db)
        ana = make_student(db, "ana", branch="X")
        ben = make_student(db, "ben", branch="X")
        find_and_claim(db, room["id"], ana["id"])
        find_and_claim(db, room["id"], ben["id"])

        everything = list_allocations(db)
        only_ben = list_allocations(db, student_id=ben["id"])

        assert [a["seat_label"] for a in everything] == ["A1", "A2"]
        assert only_ben[0]["student_name"] == "ben"
        assert only_ben[0]["building_name"] == "Main Hall"
        assert list_allocations(db, room_id=room["id"] + 1) == []
