from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.database import get_core1_db, get_core2_db
from app.models.driver import Driver
from app.models.role import RoleName
from app.models.user import User
from app.utils.security import verify_access_token
from app.utils.exceptions import (
    UnauthorizedException,
    ForbiddenException,
    AccountInactiveException,
)

# Bearer token extractor
bearer_scheme = HTTPBearer(auto_error=False)


# ─── Get Current User ─────────────────────────────────────────────────────────
def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    core2: Session = Depends(get_core2_db),
) -> User:
    """
    Validate JWT Bearer token and return the current User.
    Raises 401 if token is missing, invalid, or expired.
    Raises 403 if account is inactive.
    """
    if not credentials:
        raise UnauthorizedException("No authentication token provided")

    payload = verify_access_token(credentials.credentials)
    user_id = payload.get("sub")
    if user_id is None:
        raise UnauthorizedException("Invalid token payload")

    user = core2.get(User, int(user_id))
    if not user:
        raise UnauthorizedException("User no longer exists")

    if not user.is_active:
        raise AccountInactiveException()

    return user


# ─── Request Context ──────────────────────────────────────────────────────────
def get_request_context(
    user: User = Depends(get_current_user),
    core1: Session = Depends(get_core1_db),
) -> RequestContext:
    """Principal + permission set for this request."""
    driver_id = None
    if user.role == RoleName.DRIVER:
        driver = core1.query(Driver).filter(Driver.user_id == user.id).first()
        driver_id = driver.id if driver else None
    return RequestContext.for_role(user.id, user.role, driver_id=driver_id)


# ─── Permission Guards ────────────────────────────────────────────────────────
def require_permission(*names: str):
    """
    Factory that returns a FastAPI dependency requiring any of the given permissions.

    Usage:
        @router.post("/{booking_id}/assign")
        def assign(ctx: RequestContext = Depends(require_permission("manage_bookings"))):
            ...
    """
    def dependency(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if not ctx.has_any(*names):
            raise ForbiddenException(
                f"This action requires one of these permissions: {list(names)}"
            )
        return ctx
    return dependency
