import json

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from seatplanner.database import Base
from seatplanner.models import SeatStatus


class BuildingDB(Base):
    __tablename__ = "buildings"

    id = Column(Integer, primary_key = True, index = True)
    name = Column(String, nullable = False)
    code = Column(String, unique = True, nullable = False)

    floors = relationship("FloorDB", back_populates = "building", cascade = "all, delete")
    rooms = relationship("RoomDB", back_populates = "building", cascade = "all, delete")

    def as_dict(self):
        return {"id": self.id, "name": self.name, "code": self.code}


class FloorDB(Base):
    __tablename__ = "floors"

    id = Column(Integer, primary_key = True, index = True)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable = False)
    name = Column(String, nullable = False)
    number = Column(Integer, nullable = False, default = 0)

    building = relationship("BuildingDB", back_populates = "floors")
    rooms = relationship("RoomDB", back_populates = "floor")

    def as_dict(self):
        return {"id": self.id, "building_id": self.building_id, "name": self.name, "number": self.number}


class RoomDB(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key = True, index = True)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable = False, index = True)
    floor_id = Column(Integer, ForeignKey("floors.id"), nullable = True)
    name = Column(String, nullable = False)

    rows = Column(Integer, nullable = False)
    cols = Column(Integer, nullable = False)
    capacity = Column(Integer, nullable = False)

    # number of seats in this room with status Allocated
    claimed = Column(Integer, nullable = False, default = 0)
    branch_allocated = Column(String, nullable = True)
    version = Column(Integer, nullable = False, default = 1)

    building = relationship("BuildingDB", back_populates = "rooms")
    floor = relationship("FloorDB", back_populates = "rooms")
    seats = relationship("SeatDB", back_populates = "room", cascade = "all, delete")

    def as_dict(self):
        return {
            "id": self.id,
            "building_id": self.building_id,
            "floor_id": self.floor_id,
            "name": self.name,
            "rows": self.rows,
            "cols": self.cols,
            "capacity": self.capacity,
            "claimed": self.claimed,
            "branch_allocated": self.branch_allocated,
            "version": self.version,
        }


class SeatDB(Base):
    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint("room_id", "row", "col", name = "uq_seat_position"),
        # regenerated seats never reuse the ids of the ones they replace
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key = True, index = True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable = False, index = True)
    label = Column(String, nullable = False)
    row = Column(Integer, nullable = False)
    col = Column(Integer, nullable = False)

    # stored like: ["front_seat", "aisle_seat"]
    features_json = Column(String, nullable = False, default = "[]")

    status = Column(String, nullable = False, default = SeatStatus.AVAILABLE.value)
    # unique: a student owns at most one seat anywhere
    student_id = Column(Integer, ForeignKey("students.id"), nullable = True, unique = True)
    version = Column(Integer, nullable = False, default = 1)

    room = relationship("RoomDB", back_populates = "seats")
    student = relationship("StudentDB", back_populates = "seat")

    @property
    def features(self):
        return json.loads(self.features_json or "[]")

    def as_dict(self):
        return {
            "id": self.id,
            "room_id": self.room_id,
            "label": self.label,
            "row": self.row,
            "col": self.col,
            "features": self.features,
            "status": self.status,
            "student_id": self.student_id,
            "version": self.version,
        }


class StudentDB(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key = True, index = True)
    name = Column(String, nullable = False)
    email = Column(String, unique = True, nullable = False)
    branch = Column(String, nullable = False, index = True)
    needs_json = Column(String, nullable = False, default = "[]")

    seat = relationship("SeatDB", back_populates = "student", uselist = False)

    @property
    def accessibility_needs(self):
        return json.loads(self.needs_json or "[]")

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "branch": self.branch,
            "accessibility_needs": self.accessibility_needs,
        }
