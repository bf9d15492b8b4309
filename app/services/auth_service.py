import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.context import RequestContext
from app.models.user import User
from app.schemas.auth import LoginRequest
from app.utils.audit import log_action
from app.utils.exceptions import UnauthorizedException, AccountInactiveException
from app.utils.security import verify_password, create_access_token

logger = logging.getLogger(__name__)


def _serialize_user(user: User) -> dict:
    return {
        "id":        user.id,
        "name":      user.full_name,
        "email":     user.email,
        "phone":     user.phone,
        "role":      user.role.value,
        "is_active": user.is_active,
    }


class AuthService:

    # ─── Login ────────────────────────────────────────────────────────────────
    def login(self, core2: Session, data: LoginRequest) -> dict:
        user = core2.query(User).filter(User.email == data.email).first()

        if not user or not verify_password(data.password, user.password):
            logger.info(f"Failed login for {data.email}")
            raise UnauthorizedException("Invalid email or password")

        if not user.is_active:
            raise AccountInactiveException()

        access_token = create_access_token(user.id, user.role.value)

        log_action(core2, user.id, "LOGIN", "User", user.id, f"{user.full_name} logged in")
        core2.commit()

        return {
            "access_token": access_token,
            "token_type":   "Bearer",
            "expires_in":   settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "user":         _serialize_user(user),
        }

    # ─── Me ───────────────────────────────────────────────────────────────────
    def me(self, user: User, ctx: RequestContext) -> dict:
        data = _serialize_user(user)
        data["driver_id"] = ctx.driver_id
        data["permissions"] = sorted(ctx.permissions)
        return data


auth_service = AuthService()
