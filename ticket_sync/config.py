"""Service configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix; the root :class:`Settings` nests them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImapConfig(BaseSettings):
    """IMAP driver settings shared by every account sync."""

    model_config = {"env_prefix": "IMAP_"}

    mailbox: str = Field(default="INBOX", description="Mailbox searched for vendor mail")
    implicit_tls_port: int = Field(
        default=993,
        description="Port that uses implicit TLS; any other port upgrades with STARTTLS",
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        description="Wall-clock bound for connect + greeting + login",
    )
    socket_timeout_seconds: float = Field(
        default=60.0,
        description="Socket timeout applied to every IMAP command round-trip",
    )
    fetch_body_bytes: int = Field(
        default=65536,
        description="Size of the BODY[TEXT] slice requested per message",
    )


class IngestConfig(BaseSettings):
    """Ingest endpoint HTTP client settings."""

    model_config = {"env_prefix": "INGEST_"}

    main_app_url: str = Field(
        default="https://areyougo.ing",
        description="Base URL of the application that exposes /api/ingest",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Value sent in the X-API-Key header",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class RetryConfig(BaseSettings):
    """Retry / backoff settings for transport-level ingest failures."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum attempts per ingest call")
    initial_wait_seconds: float = Field(
        default=0.5,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=5.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class AllowListConfig(BaseSettings):
    """Which sender-matching policy is active."""

    model_config = {"env_prefix": "ALLOWLIST_"}

    policy: str = Field(
        default="exact",
        description="Sender matching policy: exact, suffix or token",
    )


class SyncConfig(BaseSettings):
    """Orchestrator limits and defaults."""

    model_config = {"env_prefix": "SYNC_"}

    default_lookback_days: int = Field(
        default=30,
        description="Lookback window when no override and no previous sync exist",
    )
    max_messages_per_sender: int = Field(
        default=10,
        description="Fetch cap per allow-listed sender",
    )
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enforce the manual sync rate limit",
    )
    rate_limit_hours: int = Field(
        default=24,
        description="Minimum hours between two manual syncs of one account",
    )
    session_retention_seconds: float = Field(
        default=3600.0,
        description="Age after which sync sessions are swept from the store",
    )
    max_concurrent_accounts: int = Field(
        default=4,
        description="Number of account syncs allowed to run at the same time",
    )
    preview_lookback_days: int = Field(
        default=30,
        description="Lookback used by connection-test previews",
    )


class AuthConfig(BaseSettings):
    """Delegated session verification against the main application."""

    model_config = {"env_prefix": "AUTH_"}

    main_app_url: str = Field(
        default="https://areyougo.ing",
        description="Base URL that serves /api/auth/get-session",
    )
    timeout_seconds: float = Field(default=10.0, description="Verification request timeout")


class Settings(BaseSettings):
    """Top-level settings for the sync service.

    All root env vars are prefixed with ``TICKET_SYNC_``.
    Example: ``TICKET_SYNC_ENCRYPTION_KEY=<base64 AES-256 key>``
    """

    model_config = SettingsConfigDict(env_prefix="TICKET_SYNC_")

    # --- Secrets ------------------------------------------------------------
    encryption_key: SecretStr | None = Field(
        default=None,
        description="Base64 AES-256 key used to decrypt stored IMAP passwords",
    )

    # --- Database -----------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ticket_sync.db",
        description="Async SQLAlchemy URL for credentials and sync history",
    )

    # --- Server -------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    allowlist: AllowListConfig = Field(default_factory=AllowListConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
