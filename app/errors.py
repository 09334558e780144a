from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class ParkingError(Exception):
    """Base for every failure the engine reports to its caller.

    A raised ParkingError always means the operation had no effect on the store.
    """

    status_code = HTTP_500_INTERNAL_SERVER_ERROR
    code = "parking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ParkingError):
    status_code = HTTP_400_BAD_REQUEST
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class VehicleNotFound(ParkingError):
    status_code = HTTP_404_NOT_FOUND
    code = "vehicle_not_found"


class NoActiveSession(ParkingError):
    status_code = HTTP_404_NOT_FOUND
    code = "no_active_session"


class SessionAlreadyClosed(ParkingError):
    status_code = HTTP_409_CONFLICT
    code = "session_already_closed"


class Conflict(ParkingError):
    status_code = HTTP_409_CONFLICT
    code = "conflict"


class AlreadyParked(Conflict):
    code = "already_parked"


class Busy(Conflict):
    # Contention on the store; the whole operation is safe to retry.
    status_code = HTTP_503_SERVICE_UNAVAILABLE
    code = "busy"


class StorageFailure(ParkingError):
    code = "storage_failure"
