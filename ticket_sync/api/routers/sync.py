"""Sync trigger, connection test and progress polling endpoints."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ...errors import (
    ConfigurationError,
    DecryptionError,
    ImapError,
    RateLimitedError,
    SessionAccessDenied,
    SessionNotFound,
)
from ...models import Credential, SyncMode, SyncTrigger
from ...orchestrator import SyncJob
from ...services import Services
from ..auth import SessionUser
from ..deps import get_current_user, get_services
from ..schemas import (
    ConnectionTestRequest,
    DryRunResponse,
    EmailOut,
    SyncRequest,
    SyncStartedResponse,
    SyncStatusResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["sync"])


def _json(model, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(model.model_dump(mode="json", by_alias=True), status_code=status_code)


@router.post("/sync")
async def trigger_sync(
    body: SyncRequest,
    user: Annotated[SessionUser, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
):
    """Start a sync for one stored inbox, or preview it synchronously with ``dryRun``."""
    if services.settings.encryption_key is None:
        logger.error("encryption_key_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )

    credential = await services.repository.get_credential(body.credential_id, user.id)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential not found")

    mode = SyncMode.DRY_RUN if body.dry_run else SyncMode.REAL
    now = datetime.now(UTC)
    try:
        services.orchestrator.check_rate_limit(credential, now, mode=mode)
    except RateLimitedError as exc:
        retry_seconds = max(1, math.ceil((exc.retry_after - now).total_seconds()))
        hours = services.settings.sync.rate_limit_hours
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": f"Rate limited. Manual sync available once per {hours} hours.",
                "rateLimitedUntil": exc.retry_after.isoformat(),
            },
            headers={"Retry-After": str(retry_seconds)},
        ) from None

    job = SyncJob(
        owner_id=user.id,
        credential=credential,
        mode=mode,
        trigger=SyncTrigger.MANUAL,
        lookback_days=body.lookback_days,
    )

    if body.dry_run:
        try:
            emails = await services.orchestrator.dry_run(job)
        except (ImapError, DecryptionError, ConfigurationError) as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(exc) or "Sync failed",
            ) from None
        return _json(
            DryRunResponse(
                emails=[EmailOut.from_email(e) for e in emails],
                emails_found=len(emails),
            )
        )

    session_id = await services.orchestrator.start(job)
    services.runner.submit(session_id, job)
    return _json(
        SyncStartedResponse(session_id=session_id, message="Sync started"),
        status.HTTP_202_ACCEPTED,
    )


@router.post("/test")
async def start_connection_test(
    body: ConnectionTestRequest,
    user: Annotated[SessionUser, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
):
    """Connect with unsaved credentials and preview matching mail.  Nothing is ingested."""
    credential = Credential(
        id=f"preview:{body.provider}",
        owner_id=user.id,
        recipient_identity=body.email,
        login_identity=body.email,
        host=body.host,
        port=body.port,
        encrypted_secret="",
        encryption_iv="",
    )
    job = SyncJob(
        owner_id=user.id,
        credential=credential,
        mode=SyncMode.PREVIEW,
        trigger=SyncTrigger.MANUAL,
        lookback_days=services.settings.sync.preview_lookback_days,
        secret=body.password,
    )
    session_id = await services.orchestrator.start(job)
    services.runner.submit(session_id, job)
    return _json(
        SyncStartedResponse(session_id=session_id, message="Test started"),
        status.HTTP_202_ACCEPTED,
    )


@router.get("/sync-status")
async def sync_status(
    user: Annotated[SessionUser, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    session_id: str | None = Query(default=None, alias="sessionId"),
):
    """Poll the progress snapshot of a session owned by the caller."""
    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing sessionId")
    try:
        snapshot = await services.store.get_for_owner(session_id, user.id)
    except SessionNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
        ) from None
    except SessionAccessDenied:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden") from None
    return _json(SyncStatusResponse.from_session(snapshot))
