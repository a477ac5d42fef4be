import json
import logging
from pathlib import Path

import pandas as pd

from seatplanner.claims import check_needs
from seatplanner.database import unit_of_work
from seatplanner.db_models import SeatDB, StudentDB
from seatplanner.errors import ValidationError
from seatplanner.models import SeatStatus

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"name", "email", "branch"}


def parse_needs(value):
    # spreadsheet cells hold needs like "front_seat, aisle_seat"
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def create_student(db, name, email, branch, accessibility_needs = ()):
    needs = list(dict.fromkeys(accessibility_needs))
    check_needs(needs)
    if not branch:
        raise ValidationError("branch is required")
    if db.query(StudentDB).filter(StudentDB.email == email).first():
        raise ValidationError(f"Student with email {email} already exists")

    with unit_of_work(db):
        student = StudentDB(name = name, email = email, branch = branch, needs_json = json.dumps(needs))
        db.add(student)
        db.flush()
        data = student.as_dict()
    return data


def list_students(db, branch = None):
    query = (
        db.query(StudentDB, SeatDB)
        .outerjoin(
            SeatDB,
            (SeatDB.student_id == StudentDB.id) & (SeatDB.status == SeatStatus.ALLOCATED.value),
        )
        .order_by(StudentDB.id)
    )
    if branch is not None:
        query = query.filter(StudentDB.branch == branch)

    return [
        {**student.as_dict(), "seat_id": seat.id if seat else None, "seat_label": seat.label if seat else None}
        for student, seat in query.all()
    ]


def read_student_sheet(file_path):
    path = Path(file_path)
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path)
    return pd.read_excel(path)


def import_students(db, file_path):
    """Load students from a CSV or Excel sheet, skipping emails already on file."""
    try:
        df = read_student_sheet(file_path)
    except (OSError, ValueError) as e:
        raise ValidationError(f"Student sheet read failed: {e}")

    if not REQUIRED_COLUMNS.issubset(df.columns):
        missing = sorted(REQUIRED_COLUMNS - set(df.columns))
        raise ValidationError("Missing columns", details = missing)

    known = {email for (email,) in db.query(StudentDB.email).all()}
    inserted = 0
    skipped = 0

    with unit_of_work(db):
        for index, row in df.iterrows():
            email = str(row["email"]).strip()
            if email in known:
                skipped += 1
                continue

            needs = parse_needs(row.get("accessibility_needs"))
            try:
                check_needs(needs)
            except ValidationError as e:
                raise ValidationError(f"Row {index + 2}: {e.message}", details = e.details)

            db.add(
                StudentDB(
                    name = str(row["name"]).strip(),
                    email = email,
                    branch = str(row["branch"]).strip(),
                    needs_json = json.dumps(needs),
                )
            )
            known.add(email)
            inserted += 1

    logger.info("Imported %d students from %s (%d duplicates skipped)", inserted, file_path, skipped)
    return {"inserted": inserted, "skipped_duplicates": skipped}
