from __future__ import annotations

from fastapi import FastAPI, HTTPException

from erpcore.api.routers import cron
from erpcore.infra.db import check_db_ready
from erpcore.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="erpcore",
    description="Payables computation and recurring subscription billing.",
    version="0.1.0",
)

app.include_router(cron.router, prefix="/api/cron", tags=["cron"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
