from seatplanner.database import SessionLocal, init_db
from seatplanner.maintenance import audit_rooms, fix_rooms_without_seats


init_db()
db = SessionLocal()

try:
    audits = audit_rooms(db)
    print(f"\nTotal rooms: {len(audits)}\n")

    for a in audits:
        status = "!! " + "; ".join(a.issues) if a.issues else "ok"
        print(
            f"{a.name} (#{a.room_id}) | Capacity {a.capacity} | Seats {a.seat_count} "
            f"| Claimed {a.claimed} | Allocated {a.allocated} | {status}"
        )

    fixed = fix_rooms_without_seats(db)
    if fixed:
        print(f"\nGenerated seats for rooms: {', '.join(str(r) for r in fixed)}")
    else:
        print("\nAll rooms have seats!")
finally:
    db.close()
