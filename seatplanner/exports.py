import logging
from pathlib import Path

import pandas as pd

from seatplanner import config
from seatplanner.concurrency import get_or_404
from seatplanner.db_models import RoomDB, SeatDB, StudentDB

logger = logging.getLogger(__name__)


def room_seating_frame(db, room_id):
    get_or_404(db, RoomDB, room_id)
    rows = (
        db.query(SeatDB, StudentDB)
        .outerjoin(StudentDB, SeatDB.student_id == StudentDB.id)
        .filter(SeatDB.room_id == room_id)
        .order_by(SeatDB.row, SeatDB.col)
        .all()
    )

    data = []
    for seat, student in rows:
        data.append({
            "label": seat.label,
            "row": seat.row + 1,
            "column": seat.col + 1,
            "status": seat.status,
            "features": ", ".join(seat.features),
            "student_id": student.id if student else None,
            "student_name": student.name if student else "",
            "branch": student.branch if student else "",
        })

    return pd.DataFrame(data, columns = [
        "label", "row", "column", "status", "features", "student_id", "student_name", "branch",
    ])


def export_room_seating(db, room_id, export_dir = None):
    """Write the room's seat map to ``allocation_<room>.xlsx`` and return its path."""
    df = room_seating_frame(db, room_id)

    export_dir = Path(export_dir or config.EXPORT_DIR)
    export_dir.mkdir(parents = True, exist_ok = True)

    file_path = export_dir / f"allocation_room_{room_id}.xlsx"
    df.to_excel(file_path, index = False)
    logger.info("Exported %d seats of room %s to %s", len(df), room_id, file_path)
    return file_path
