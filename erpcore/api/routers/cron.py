from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from erpcore.api.deps import require_cron_secret
from erpcore.domain.models import (
    CanceledCleanupRead,
    InvoicingRunRead,
    OverdueRunRead,
    TrialExpiryRead,
)
from erpcore.infra.logging import get_logger
from erpcore.infra.payment_gateway import build_payment_gateway
from erpcore.services.dunning_service import DunningService
from erpcore.services.invoicing_service import InvoicingService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


def get_invoicing_service() -> InvoicingService:
    return InvoicingService(payment_gateway=build_payment_gateway())


def get_dunning_service() -> DunningService:
    return DunningService()


InvoicingDep = Annotated[InvoicingService, Depends(get_invoicing_service)]
DunningDep = Annotated[DunningService, Depends(get_dunning_service)]


def _run_failed(job: str, exc: Exception) -> PlainTextResponse:
    logger.exception("cron_job_failed", job=job)
    return PlainTextResponse(f"Error: {exc}", status_code=500)


@router.get(
    "/invoicing",
    response_model=InvoicingRunRead,
    response_model_exclude_none=True,
)
def run_invoicing(service: InvoicingDep) -> InvoicingRunRead | PlainTextResponse:
    try:
        return service.run_batch()
    except Exception as exc:
        return _run_failed("invoicing", exc)


@router.post(
    "/overdue-invoices",
    response_model=OverdueRunRead,
    response_model_exclude_none=True,
)
def run_overdue_invoices(service: DunningDep) -> OverdueRunRead | PlainTextResponse:
    try:
        return service.mark_overdue_invoices()
    except Exception as exc:
        return _run_failed("overdue-invoices", exc)


@router.get(
    "/trials",
    response_model=TrialExpiryRead,
    response_model_exclude_none=True,
)
def run_trial_expiry(service: DunningDep) -> TrialExpiryRead | PlainTextResponse:
    try:
        return service.expire_trials()
    except Exception as exc:
        return _run_failed("trials", exc)


@router.get(
    "/cleanup",
    response_model=CanceledCleanupRead,
    response_model_exclude_none=True,
)
def run_cleanup(service: DunningDep) -> CanceledCleanupRead | PlainTextResponse:
    try:
        return service.expire_canceled_subscriptions()
    except Exception as exc:
        return _run_failed("cleanup", exc)
