"""Error taxonomy shared by every seat and room operation.

Services raise these; the API layer turns them into JSON responses carrying
``code`` so clients can tell a stale version from a bad request.
"""


class SeatPlannerError(Exception):
    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, details=None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(SeatPlannerError):
    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Validation failed"


class NotFoundError(SeatPlannerError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


class ConflictError(SeatPlannerError):
    """The stored version moved on; ``current`` is what is stored now.

    ``entity`` names the kind of record that moved ("seat" or "room").
    """

    code = "VERSION_CONFLICT"
    status_code = 409
    message = "Modified by another user. Please refresh and try again."

    def __init__(self, current, message=None, entity=None):
        self.current = current
        self.entity = entity
        super().__init__(message)

    def as_dict(self):
        body = super().as_dict()
        body["current"] = self.current
        if self.entity:
            body["entity"] = self.entity
        return body


class ExclusivityError(SeatPlannerError):
    code = "BRANCH_EXCLUSIVITY"
    status_code = 409
    message = "Room is already allocated to another branch"


class TransitionError(SeatPlannerError):
    code = "INVALID_TRANSITION"
    status_code = 409
    message = "Invalid seat status change"


class CapacityExceededError(SeatPlannerError):
    code = "ROOM_FULL"
    status_code = 409
    message = "Room is full"


class AlreadySeatedError(SeatPlannerError):
    code = "STUDENT_ALREADY_SEATED"
    status_code = 409
    message = "Student already has an allocated seat"


class ClaimFailedError(SeatPlannerError):
    code = "NO_MATCHING_SEAT"
    status_code = 409
    message = "No seats match your criteria"
