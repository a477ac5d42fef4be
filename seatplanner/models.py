from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SeatStatus(str, Enum):
    AVAILABLE = "Available"
    ALLOCATED = "Allocated"
    BROKEN = "Broken"


@dataclass(frozen=True)
class SeatSpec:
    """One seat of a generated layout, before it is stored."""
    label: str
    row: int
    col: int
    features: tuple = ()


@dataclass
class UnplacedStudent:
    student: dict
    reason: str


@dataclass
class AllocationSummary:
    branch_allocated: str
    allocated_count: int = 0
    unallocated_count: int = 0
    available_seats_after_allocation: int = 0
    rooms_allocated: List[int] = field(default_factory=list)
    rooms_excluded: List[int] = field(default_factory=list)
    unallocated_students: List[UnplacedStudent] = field(default_factory=list)
    utilization: float = 0.0


@dataclass
class RebalanceSummary:
    reallocated_count: int = 0
    still_unassigned_count: int = 0
    still_unassigned: List[UnplacedStudent] = field(default_factory=list)


@dataclass
class RegenerationResult:
    room: dict
    seats: List[dict]
    released_student_ids: List[int] = field(default_factory=list)


@dataclass
class RoomUpdateResult:
    room: dict
    regenerated: bool = False
    released_student_ids: List[int] = field(default_factory=list)
    warning: Optional[str] = None


@dataclass
class RoomAudit:
    room_id: int
    name: str
    capacity: int
    seat_count: int
    claimed: int
    allocated: int
    issues: List[str] = field(default_factory=list)
