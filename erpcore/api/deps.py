from __future__ import annotations

import os
import secrets

from fastapi import HTTPException, Request, status

from erpcore.infra.logging import get_logger

logger = get_logger(__name__)

CRON_SECRET = os.getenv("CRON_SECRET")


def require_cron_secret(request: Request) -> None:
    if not CRON_SECRET:
        logger.error("cron_secret_not_configured", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )

    provided = request.headers.get("authorization") or ""
    expected = f"Bearer {CRON_SECRET}"
    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.error("cron_request_unauthorized", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
