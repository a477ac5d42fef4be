import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from seatplanner import config
from seatplanner.allocator import allocate_branch
from seatplanner.claims import find_and_claim
from seatplanner.database import SessionLocal, init_db
from seatplanner.db_models import BuildingDB, RoomDB
from seatplanner.errors import SeatPlannerError
from seatplanner.events import EventBus, RoomDeleted, RoomUpdated, SeatsUpdated, SeatUpdated
from seatplanner.exports import export_room_seating
from seatplanner.layouts import regenerate_room_seats
from seatplanner.rebalancer import rebalance
from seatplanner.rooms import (
    create_building,
    create_floor,
    create_room,
    delete_room,
    eligible_branches,
    room_seats,
    update_room,
)
from seatplanner.seats import list_allocations, update_seat_features, update_seat_status, vacate_seat
from seatplanner.student_import import create_student, import_students, list_students

logging.basicConfig(level = config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def log_event(event):
    logger.info("event %s %s", type(event).__name__, event)


def make_event_bus():
    bus = EventBus()
    for event_type in (SeatUpdated, RoomUpdated, SeatsUpdated, RoomDeleted):
        bus.subscribe(event_type, log_event)
    return bus


@asynccontextmanager
async def lifespan(app):
    init_db()
    yield


app = FastAPI(title = "Seat Planner API", lifespan = lifespan)
app.state.event_bus = make_event_bus()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_bus(request: Request):
    return request.app.state.event_bus


@app.exception_handler(SeatPlannerError)
async def seat_planner_error_handler(request: Request, exc: SeatPlannerError):
    return JSONResponse(status_code = exc.status_code, content = exc.as_dict())


class BuildingRequest(BaseModel):
    name: str
    code: str


class FloorRequest(BaseModel):
    name: str
    number: int = 0


class RoomRequest(BaseModel):
    building_id: int
    name: str
    rows: int
    cols: int
    capacity: int
    floor_id: Optional[int] = None


class RoomUpdateRequest(BaseModel):
    version: int
    name: Optional[str] = None
    rows: Optional[int] = None
    cols: Optional[int] = None
    capacity: Optional[int] = None
    branch_allocated: Optional[str] = None

    # only branch_allocated may be cleared with null
    @field_validator("name", "rows", "cols", "capacity")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class VersionRequest(BaseModel):
    version: int


class ClaimRequest(BaseModel):
    student_id: int
    needs: Optional[List[str]] = None


class SeatStatusRequest(BaseModel):
    status: str
    version: int
    student_id: Optional[int] = None


class SeatFeaturesRequest(BaseModel):
    features: List[str]
    version: int


class AllocateRequest(BaseModel):
    branch: str
    room_id: Optional[int] = None
    building_id: Optional[int] = None


class StudentRequest(BaseModel):
    name: str
    email: str
    branch: str
    accessibility_needs: List[str] = Field(default_factory = list)


class ImportRequest(BaseModel):
    file_path: str


@app.get("/")
def root():
    return {"message": "Seat Planner API is running !"}


@app.post("/buildings", status_code = 201)
def add_building(req: BuildingRequest, db: Session = Depends(get_db)):
    return create_building(db, req.name, req.code)


@app.get("/buildings")
def get_buildings(db: Session = Depends(get_db)):
    return [b.as_dict() for b in db.query(BuildingDB).order_by(BuildingDB.id).all()]


@app.post("/buildings/{building_id}/floors", status_code = 201)
def add_floor(building_id: int, req: FloorRequest, db: Session = Depends(get_db)):
    return create_floor(db, building_id, req.name, req.number)


@app.post("/rooms", status_code = 201)
def add_room(req: RoomRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    result = create_room(
        db, req.building_id, req.name, req.rows, req.cols, req.capacity,
        floor_id = req.floor_id, bus = bus,
    )
    return {"room": result.room, "seats_created": len(result.seats)}


@app.get("/rooms")
def get_rooms(building_id: Optional[int] = None, db: Session = Depends(get_db)):
    query = db.query(RoomDB)
    if building_id is not None:
        query = query.filter(RoomDB.building_id == building_id)
    return [r.as_dict() for r in query.order_by(RoomDB.id).all()]


@app.get("/rooms/{room_id}/seats")
def get_room_seats(room_id: int, db: Session = Depends(get_db)):
    seats = room_seats(db, room_id)
    return {"room_id": room_id, "total_seats": len(seats), "seats": seats}


@app.patch("/rooms/{room_id}")
def edit_room(room_id: int, req: RoomUpdateRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    changes = req.model_dump(exclude_unset = True)
    version = changes.pop("version")
    return asdict(update_room(db, room_id, version, bus = bus, **changes))


@app.delete("/rooms/{room_id}", status_code = 204)
def remove_room(room_id: int, version: int, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    delete_room(db, room_id, version, bus = bus)
    return Response(status_code = 204)


@app.post("/rooms/{room_id}/layout")
def regenerate_layout(room_id: int, req: VersionRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return asdict(regenerate_room_seats(db, room_id, req.version, bus = bus))


@app.post("/rooms/{room_id}/claim")
def claim_seat(room_id: int, req: ClaimRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return find_and_claim(db, room_id, req.student_id, requested_needs = req.needs, bus = bus)


@app.patch("/seats/{seat_id}/status")
def edit_seat_status(seat_id: int, req: SeatStatusRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return update_seat_status(db, seat_id, req.version, req.status, student_id = req.student_id, bus = bus)


@app.patch("/seats/{seat_id}/features")
def edit_seat_features(seat_id: int, req: SeatFeaturesRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return update_seat_features(db, seat_id, req.version, req.features, bus = bus)


@app.post("/allocations/branch")
def allocate(req: AllocateRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    summary = allocate_branch(db, req.branch, room_id = req.room_id, building_id = req.building_id, bus = bus)
    return asdict(summary)


@app.post("/allocations/rebalance")
def rebalance_allocations(db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return asdict(rebalance(db, bus = bus))


@app.get("/allocations")
def get_allocations(student_id: Optional[int] = None, room_id: Optional[int] = None, db: Session = Depends(get_db)):
    return list_allocations(db, student_id = student_id, room_id = room_id)


@app.get("/allocations/eligible-branches")
def get_eligible_branches(room_id: Optional[int] = None, building_id: Optional[int] = None, db: Session = Depends(get_db)):
    return eligible_branches(db, room_id = room_id, building_id = building_id)


@app.delete("/allocations/{seat_id}", status_code = 204)
def unassign(seat_id: int, version: int, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    vacate_seat(db, seat_id, version, bus = bus)
    return Response(status_code = 204)


@app.post("/students", status_code = 201)
def add_student(req: StudentRequest, db: Session = Depends(get_db)):
    return create_student(db, req.name, req.email, req.branch, req.accessibility_needs)


@app.get("/students")
def get_students(branch: Optional[str] = None, db: Session = Depends(get_db)):
    return list_students(db, branch = branch)


@app.post("/students/import")
def import_students_from_sheet(req: ImportRequest, db: Session = Depends(get_db)):
    result = import_students(db, req.file_path)
    return {"message": "Student import completed ✅", **result}


@app.get("/export/rooms/{room_id}/excel")
def export_room_excel(room_id: int, db: Session = Depends(get_db)):
    file_path = export_room_seating(db, room_id)
    return FileResponse(
        path = str(file_path),
        filename = file_path.name,
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
