"""FastAPI dependency-injection helpers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from ..config import Settings
from ..services import Services
from .auth import SessionUser, verify_session


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> SessionUser:
    user = await verify_session(
        services.http,
        services.settings.auth,
        request.headers.get("cookie"),
    )
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user
