"""
Token records owned by the signed-in user, plus token abuse reports.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from kepka.db import UserRecord
from kepka.dependencies import (
    RequestContext,
    Services,
    get_current_user,
    get_request_context,
    get_services,
)
from kepka.errors import NotFound
from kepka.routes.common import audit
from kepka.schemas import (
    Pagination,
    TokenCreateRequest,
    TokenReportRequest,
    TokenUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def list_tokens(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, min_length=1),
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    tokens, total = services.db.list_tokens(
        owner_id=user.id, search=search, limit=limit, offset=offset
    )
    return {
        "tokens": [t.as_dict() for t in tokens],
        "pagination": Pagination.of(total, limit, offset).model_dump(),
    }


@router.get("/{token_id}")
def get_token(
    token_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    token = services.db.get_token(token_id, owner_id=user.id)
    if token is None:
        raise NotFound("Token not found")
    return {"token": token.as_dict()}


@router.post("", status_code=201)
def create_token(
    payload: TokenCreateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    token = services.db.create_token(
        user.id,
        token_name=payload.token_name,
        symbol=payload.symbol,
        policy_id=payload.policy_id,
        asset_name=payload.asset_name,
        decimals=payload.decimals,
        total_supply=payload.total_supply,
        description=payload.description,
        image_url=str(payload.image_url) if payload.image_url else None,
    )
    logger.info("Token created: %s by %s", token.token_name, user.email)
    audit(services.db, user, ctx, "create", "token", token.id)
    services.broadcaster.publish(user.id, "token-created", token.as_dict())
    services.notifier.notify(
        "token_created",
        {
            "token_name": token.token_name,
            "symbol": token.symbol,
            "total_supply": token.total_supply,
        },
        user.email,
    )
    return {"message": "Token created successfully", "token": token.as_dict()}


@router.put("/{token_id}")
def update_token(
    token_id: str,
    payload: TokenUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("image_url") is not None:
        changes["image_url"] = str(changes["image_url"])
    token = services.db.update_token(token_id, user.id, **changes)
    if token is None:
        raise NotFound("Token not found")
    logger.info("Token updated: %s by %s", token.token_name, user.email)
    audit(services.db, user, ctx, "update", "token", token.id, {"fields": sorted(changes)})
    return {"message": "Token updated successfully", "token": token.as_dict()}


@router.post("/{token_id}/reports", status_code=201)
def report_token(
    token_id: str,
    payload: TokenReportRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    # Any user may report any token.
    if services.db.get_token(token_id) is None:
        raise NotFound("Token not found")
    report = services.db.create_token_report(
        token_id=token_id,
        reporter_id=user.id,
        report_type=payload.report_type.value,
        description=payload.description,
    )
    logger.info("Token %s reported (%s) by %s", token_id, report.report_type, user.email)
    audit(services.db, user, ctx, "report", "token", token_id, {"report_id": report.id})
    return {"message": "Report submitted successfully", "report": report.as_dict()}
