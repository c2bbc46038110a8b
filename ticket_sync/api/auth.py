"""Delegated session verification.

There is no local user store: the caller's cookie is forwarded to the main
application, which answers with the signed-in user or nothing.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ..config import AuthConfig

logger = structlog.get_logger()


class SessionUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None


async def verify_session(
    client: httpx.AsyncClient,
    config: AuthConfig,
    cookie: str | None,
) -> SessionUser | None:
    """Return the user owning *cookie*, or ``None`` if it is not a valid session."""
    if not cookie:
        return None

    url = f"{config.main_app_url.rstrip('/')}/api/auth/get-session"
    try:
        response = await client.get(
            url,
            headers={"cookie": cookie},
            timeout=config.timeout_seconds,
        )
    except httpx.HTTPError as exc:
        logger.warning("session_verification_failed", error=str(exc))
        return None

    if not response.is_success:
        logger.info("session_rejected", status_code=response.status_code)
        return None

    try:
        data = response.json()
    except ValueError:
        logger.warning("session_response_not_json")
        return None

    user = data.get("user") if isinstance(data, dict) else None
    if not user:
        return None
    try:
        return SessionUser.model_validate(user)
    except ValidationError:
        logger.warning("session_user_malformed")
        return None
