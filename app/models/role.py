import enum


class RoleName(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN       = "admin"
    DISPATCH    = "dispatch"
    FINANCE     = "finance"
    DRIVER      = "driver"
    CUSTOMER    = "customer"


# ─── Permissions ──────────────────────────────────────────────────────────────
MANAGE_BOOKINGS      = "manage_bookings"
VIEW_BOOKINGS        = "view_bookings"
CREATE_BOOKING       = "create_booking"
MANAGE_DRIVERS       = "manage_drivers"
VIEW_DRIVERS         = "view_drivers"
VIEW_DRIVER_LOCATION = "view_driver_location"
UPDATE_STATUS        = "update_status"
MANAGE_FLEET         = "manage_fleet"
VIEW_FLEET           = "view_fleet"

ALL_PERMISSIONS = frozenset({
    MANAGE_BOOKINGS, VIEW_BOOKINGS, CREATE_BOOKING,
    MANAGE_DRIVERS, VIEW_DRIVERS, VIEW_DRIVER_LOCATION,
    UPDATE_STATUS, MANAGE_FLEET, VIEW_FLEET,
})

ROLE_PERMISSIONS: dict[RoleName, frozenset[str]] = {
    RoleName.SUPER_ADMIN: ALL_PERMISSIONS,
    RoleName.ADMIN: frozenset({
        MANAGE_BOOKINGS, VIEW_BOOKINGS, CREATE_BOOKING,
        MANAGE_DRIVERS, VIEW_DRIVERS, VIEW_DRIVER_LOCATION,
        MANAGE_FLEET, VIEW_FLEET,
    }),
    RoleName.DISPATCH: frozenset({
        MANAGE_BOOKINGS, VIEW_BOOKINGS,
        VIEW_DRIVERS, VIEW_DRIVER_LOCATION, VIEW_FLEET,
    }),
    RoleName.FINANCE: frozenset({VIEW_BOOKINGS}),
    RoleName.DRIVER: frozenset({UPDATE_STATUS}),
    RoleName.CUSTOMER: frozenset({CREATE_BOOKING}),
}


def permissions_for(role: RoleName) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())
