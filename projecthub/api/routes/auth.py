"""Authentication and user endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from projecthub.api.deps import (
    bearer_token,
    get_auth_service,
    get_config,
    get_current_context,
    get_db,
)
from projecthub.api.schemas import CreateUserRequest, GiftRequest, LoginRequest, RegisterRequest
from projecthub.engine.config import PlatformConfig
from projecthub.engine.context import ExecutionContext
from projecthub.engine.security import AuthService
from projecthub.services.users import UserService

router = APIRouter(tags=["auth"])


@router.post("/auth/register", status_code=201)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    config: PlatformConfig = Depends(get_config),
    auth: AuthService = Depends(get_auth_service),
):
    UserService(db, config.security).register(body.name, body.email, body.password, body.department)
    return auth.authenticate(body.email, body.password)


@router.post("/auth/login")
def login(body: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.authenticate(body.email, body.password)


@router.post("/auth/logout")
def logout(
    authorization: Optional[str] = Header(None),
    ctx: ExecutionContext = Depends(get_current_context),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(bearer_token(authorization))
    return {"message": "Logged out"}


@router.get("/auth/me")
def me(ctx: ExecutionContext = Depends(get_current_context), db: Session = Depends(get_db)):
    return UserService(db).get_me(ctx).to_dict()


@router.get("/users")
def list_users(ctx: ExecutionContext = Depends(get_current_context), db: Session = Depends(get_db)):
    return [u.to_dict() for u in UserService(db).list_users(ctx)]


@router.post("/users", status_code=201)
def create_user(
    body: CreateUserRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    config: PlatformConfig = Depends(get_config),
):
    user = UserService(db, config.security).create_user(
        ctx, body.name, body.email, body.password, body.department, body.role, body.permissions,
    )
    return user.to_dict()


@router.post("/users/{user_id}/gifts", status_code=201)
def gift(
    user_id: int,
    body: GiftRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    db: Session = Depends(get_db),
):
    user = UserService(db).gift(ctx, user_id, body.value, body.description)
    return {
        "rewardPoints": user.reward_points,
        "rewards": [r.to_dict() for r in user.rewards],
    }
