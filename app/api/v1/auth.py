from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.database import get_core2_db
from app.dependencies import get_current_user, get_request_context
from app.models.user import User
from app.schemas.auth import LoginRequest
from app.schemas.common import success_response
from app.services.auth_service import auth_service

router = APIRouter(prefix="/auth")


@router.post("/login", summary="Login and get an access token")
def login(body: LoginRequest, core2: Session = Depends(get_core2_db)):
    return success_response("Login successful", auth_service.login(core2, body))


@router.get("/me", summary="Current user and permissions")
def me(
    user: User           = Depends(get_current_user),
    ctx:  RequestContext = Depends(get_request_context),
):
    return success_response("Current user retrieved", auth_service.me(user, ctx))
