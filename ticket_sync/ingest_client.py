"""Async HTTP client for the main application's ingest endpoint."""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from .allowlist import extract_address
from .config import IngestConfig, RetryConfig
from .errors import IngestError
from .models import Email
from .retry import transport_retry

logger = structlog.get_logger()

# The request never reached the server, so a retry cannot double-ingest.
RETRYABLE_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
)


class IngestPayload(BaseModel):
    """One normalized email, as ``POST /api/ingest`` expects it."""

    model_config = ConfigDict(populate_by_name=True)

    recipient_email: str = Field(alias="recipientEmail")
    sender_email: str = Field(alias="senderEmail")
    subject: str
    body: str
    email_date: str = Field(alias="emailDate")
    user_id: str = Field(alias="userId")

    @classmethod
    def from_email(cls, email: Email, *, recipient_identity: str, owner_id: str) -> IngestPayload:
        return cls(
            recipient_email=recipient_identity,
            sender_email=extract_address(email.sender),
            subject=email.subject,
            body=email.body_text,
            email_date=email.sent_at.isoformat(),
            user_id=owner_id,
        )


class IngestClient:
    """Delivers extracted emails to ``/api/ingest``, one request per email.

    Connection failures are retried; any HTTP response outside 2xx raises
    :class:`IngestError` immediately.
    """

    def __init__(
        self,
        config: IngestConfig,
        retry_config: RetryConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._post = transport_retry(
            retry_config or RetryConfig(),
            retry_on=RETRYABLE_TRANSPORT_ERRORS,
            operation="ingest_post",
        )(self._post_once)

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("ingest_client_started", url=self.endpoint)

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("ingest_client_stopped")

    @property
    def endpoint(self) -> str:
        return f"{self._config.main_app_url.rstrip('/')}/api/ingest"

    async def submit(self, email: Email, *, recipient_identity: str, owner_id: str) -> None:
        """POST one email.  Raises :class:`IngestError` on a non-2xx response."""
        if self._client is None:
            raise AssertionError("Client not started")

        payload = IngestPayload.from_email(
            email, recipient_identity=recipient_identity, owner_id=owner_id
        )
        response = await self._post(payload)
        if not response.is_success:
            logger.warning(
                "ingest_rejected",
                message_id=email.message_id,
                status_code=response.status_code,
            )
            raise IngestError(response.status_code, response.text)
        logger.debug(
            "ingest_accepted",
            message_id=email.message_id,
            status_code=response.status_code,
        )

    async def _post_once(self, payload: IngestPayload) -> httpx.Response:
        assert self._client is not None
        headers = {"Content-Type": "application/json"}
        if self._config.api_key is not None:
            headers["X-API-Key"] = self._config.api_key.get_secret_value()
        return await self._client.post(
            self.endpoint,
            content=payload.model_dump_json(by_alias=True),
            headers=headers,
        )
