"""Quota, billing-collaborator and operational routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response

from classroom_rag.api.dependencies import get_account_id, get_ledger, require_admin
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.core.metrics import metrics_response
from classroom_rag.models.dto import CreditRequest, RevokeRequest
from classroom_rag.quota.ledger import QuotaLedger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/quota", summary="Quota snapshot for the caller")
def get_quota(
    account_id: str = Depends(get_account_id),
    ledger: QuotaLedger = Depends(get_ledger),
) -> dict[str, Any]:
    ledger.reset_if_due(account_id)
    payload = ledger.snapshot(account_id).to_dict()
    payload["entitlements"] = sorted(ledger.entitlements(account_id))
    return payload


@router.post("/admin/credits", summary="Credit purchased tokens", dependencies=[Depends(require_admin)])
def credit_account(
    request: CreditRequest,
    ledger: QuotaLedger = Depends(get_ledger),
) -> dict[str, Any]:
    snapshot = ledger.credit(
        request.account_id,
        request.tokens,
        source=request.source,
        entitlements=request.entitlements,
    )
    logger.info(
        "Account credited",
        extra=log_context(account_id=request.account_id, tokens=request.tokens, source=request.source),
    )
    payload = snapshot.to_dict()
    payload["entitlements"] = sorted(ledger.entitlements(request.account_id))
    return payload


@router.post(
    "/admin/entitlements/revoke",
    summary="Revoke an entitlement granted by one source",
    dependencies=[Depends(require_admin)],
)
def revoke_entitlement(
    request: RevokeRequest,
    ledger: QuotaLedger = Depends(get_ledger),
) -> dict[str, Any]:
    ledger.revoke_entitlement(request.account_id, request.entitlement, request.source)
    return {"accountId": request.account_id, "entitlements": sorted(ledger.entitlements(request.account_id))}


@router.get("/metrics", summary="Prometheus metrics")
def metrics() -> Response:
    return metrics_response()
