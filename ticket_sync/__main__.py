"""Entry point for the ticket sync service.

Usage::

    python -m ticket_sync serve          # HTTP API (sync, test, sync-status)
    python -m ticket_sync scheduled      # one pass over auto-sync inboxes (run from cron)
    python -m ticket_sync generate-key   # print a fresh base64 AES-256 key
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Settings

COMMANDS = ("serve", "scheduled", "generate-key")


async def _run_scheduled(settings: Settings) -> int:
    import structlog

    from .scheduler import run_scheduled_sync
    from .services import open_services

    if settings.encryption_key is None:
        # every account would fail to decrypt; skip the batch instead
        structlog.get_logger().error("encryption_key_missing", command="scheduled")
        return 1

    async with open_services(settings) as services:
        summary = await run_scheduled_sync(
            services.repository, services.orchestrator, services.runner
        )
    return 1 if summary.failed else 0


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print(f"Usage: python -m ticket_sync <{'|'.join(COMMANDS)}>", file=sys.stderr)
        sys.exit(1)

    mode = sys.argv[1]

    if mode == "generate-key":
        from .crypto import generate_key

        print(generate_key())
        return

    from .config import Settings
    from .logging import setup_logging

    settings = Settings()
    setup_logging(json=settings.log_json, level=settings.log_level)

    if mode == "serve":
        import uvicorn

        uvicorn.run(
            "ticket_sync.api.app:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )

    elif mode == "scheduled":
        sys.exit(asyncio.run(_run_scheduled(settings)))


if __name__ == "__main__":
    main()
