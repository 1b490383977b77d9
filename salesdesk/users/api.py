from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from salesdesk.api.errors import error_from_exception
from salesdesk.core.auth import get_auth_context
from salesdesk.core.database import get_db
from salesdesk.core.errors import SalesDeskError
from salesdesk.platform.security.context import AuthContext
from salesdesk.users.schemas import ProfileUpdate, UserCreate, UserRead
from salesdesk.users.service import user_service


users_router = APIRouter(prefix="/users", tags=["users"])
me_router = APIRouter(prefix="/me", tags=["auth"])


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    payload: UserCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return user_service.create_user(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@users_router.get("", response_model=list[UserRead])
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return user_service.list_users(db, ctx)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@me_router.get("", response_model=UserRead)
def get_me(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return user_service.get_profile(db, ctx)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@me_router.patch("", response_model=UserRead)
def update_me(
    request: Request,
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return user_service.update_profile(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)
