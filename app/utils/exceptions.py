from fastapi import HTTPException, status


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES: machine-readable constants for dispatch clients
# ═══════════════════════════════════════════════════════════════════════════════
class ErrorCode:
    VALIDATION_ERROR        = "VALIDATION_ERROR"
    UNAUTHORIZED            = "UNAUTHORIZED"
    TOKEN_EXPIRED           = "TOKEN_EXPIRED"
    FORBIDDEN               = "FORBIDDEN"
    NOT_FOUND               = "NOT_FOUND"
    DUPLICATE_ENTRY         = "DUPLICATE_ENTRY"
    ACCOUNT_INACTIVE        = "ACCOUNT_INACTIVE"
    BOOKING_NOT_ASSIGNABLE  = "BOOKING_NOT_ASSIGNABLE"
    ALREADY_ASSIGNED        = "ALREADY_ASSIGNED"
    DRIVER_UNAVAILABLE      = "DRIVER_UNAVAILABLE"
    NO_VEHICLE              = "NO_VEHICLE"
    NO_DRIVER_ASSIGNED      = "NO_DRIVER_ASSIGNED"
    BOOKING_CLOSED          = "BOOKING_CLOSED"
    INVALID_TRANSITION      = "INVALID_TRANSITION"
    NO_DRIVERS_NEARBY       = "NO_DRIVERS_NEARBY"
    GEOCODING_FAILED        = "GEOCODING_FAILED"
    VEHICLE_UNAVAILABLE     = "VEHICLE_UNAVAILABLE"
    CONSISTENCY_WARNING     = "CONSISTENCY_WARNING"
    SERVICE_UNAVAILABLE     = "SERVICE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR   = "INTERNAL_SERVER_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════
class AppException(HTTPException):
    """
    Base exception for all application-level errors.
    Carries a machine-readable error_code for client handling.
    """
    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        details: list | None = None,
        field: str | None = None,
    ):
        self.error_code = error_code
        self.message = message
        super().__init__(status_code=status_code, detail={
            "message": message,
            "error": {
                "code": error_code,
                "details": details,
                "field": field,
            }
        })


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH / GENERIC
# ═══════════════════════════════════════════════════════════════════════════════

class UnauthorizedException(AppException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message, ErrorCode.UNAUTHORIZED)


class TokenExpiredException(AppException):
    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Access token has expired", ErrorCode.TOKEN_EXPIRED)


class ForbiddenException(AppException):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(status.HTTP_403_FORBIDDEN, message, ErrorCode.FORBIDDEN)


class AccountInactiveException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            "Your account has been deactivated. Contact admin.",
            ErrorCode.ACCOUNT_INACTIVE,
        )


class NotFoundException(AppException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found", ErrorCode.NOT_FOUND)


class DuplicateEntryException(AppException):
    def __init__(self, message: str = "Record already exists", field: str | None = None):
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.DUPLICATE_ENTRY, field=field)


class ValidationException(AppException):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.VALIDATION_ERROR, field=field)


class InvalidCoordinatesException(ValidationException):
    def __init__(self):
        super().__init__(
            "Invalid coordinates. Latitude must be between -90 and 90, longitude between -180 and 180",
        )


# ═══════════════════════════════════════════════════════════════════════════════
# DISPATCH PRECONDITIONS
# ═══════════════════════════════════════════════════════════════════════════════

class BookingNotAssignableException(AppException):
    def __init__(self, message: str = "Booking cannot be assigned in its current status",
                 status_code: int = status.HTTP_409_CONFLICT):
        super().__init__(status_code, message, ErrorCode.BOOKING_NOT_ASSIGNABLE)


class AlreadyAssignedException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_409_CONFLICT,
            "A driver is already assigned to this booking",
            ErrorCode.ALREADY_ASSIGNED,
        )


class DriverUnavailableException(AppException):
    def __init__(self, message: str = "Driver is not available for assignment",
                 status_code: int = status.HTTP_409_CONFLICT):
        super().__init__(status_code, message, ErrorCode.DRIVER_UNAVAILABLE)


class NoVehicleException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_409_CONFLICT,
            "Driver does not have an active vehicle. Assign a vehicle to this driver first.",
            ErrorCode.NO_VEHICLE,
        )


class NoDriverAssignedException(AppException):
    def __init__(self, message: str = "No driver is assigned to this booking"):
        super().__init__(
            status.HTTP_409_CONFLICT,
            message,
            ErrorCode.NO_DRIVER_ASSIGNED,
        )


class BookingClosedException(AppException):
    def __init__(self, current: str):
        super().__init__(
            status.HTTP_409_CONFLICT,
            f"Booking is already {current}",
            ErrorCode.BOOKING_CLOSED,
        )


class InvalidTransitionException(AppException):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            status.HTTP_409_CONFLICT,
            f"Invalid status transition from {current} to {requested}",
            ErrorCode.INVALID_TRANSITION,
            details=[{"from": current, "to": requested}],
        )


class NoDriversNearbyException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_404_NOT_FOUND,
            "No available drivers with a vehicle found nearby",
            ErrorCode.NO_DRIVERS_NEARBY,
        )


class GeocodingFailedException(AppException):
    def __init__(self, message: str = "Could not determine pickup location coordinates"):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, message, ErrorCode.GEOCODING_FAILED)


class VehicleUnavailableException(AppException):
    def __init__(self, message: str = "Vehicle is not operational (maintenance or inactive)"):
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.VEHICLE_UNAVAILABLE)


class ConsistencyWarningException(AppException):
    """A cross-store write failed and its compensation failed too."""
    def __init__(self, message: str):
        super().__init__(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message,
            ErrorCode.CONSISTENCY_WARNING,
        )
