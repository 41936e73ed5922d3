"""
Gasless sponsorship and security-policy routes.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from kepka.db import DbClient, UserRecord
from kepka.dependencies import (
    RequestContext,
    get_current_user,
    get_db_client,
    get_recorder,
    get_request_context,
)
from kepka.errors import NotFound
from kepka.policies import SPONSOR_ACTION, normalize_policy_config
from kepka.recorder import TransactionRecorder
from kepka.routes.common import audit
from kepka.schemas import (
    ExecuteSponsorshipRequest,
    PolicyCreateRequest,
    PolicyUpdateRequest,
    SponsorRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sponsor")
def sponsor_transaction(
    payload: SponsorRequest,
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
    ctx: RequestContext = Depends(get_request_context),
):
    sponsorship = recorder.sponsor(
        user.id,
        payload.transaction_id,
        payload.estimated_fee,
        origin_ip=ctx.ip_address,
    )
    audit(
        recorder.db,
        user,
        ctx,
        SPONSOR_ACTION,
        "gasless_transaction",
        sponsorship.id,
        {"transaction_id": payload.transaction_id, "nonce": sponsorship.nonce},
    )
    return {
        "message": "Transaction sponsored successfully",
        "gasless_transaction": recorder.view(sponsorship),
    }


@router.get("/transactions")
def list_sponsorships(
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
):
    rows = []
    for sponsorship in recorder.list_sponsorships(user.id):
        view = recorder.view(sponsorship)
        transaction = recorder.db.get_transaction(sponsorship.transaction_id)
        view["transaction"] = transaction.as_dict() if transaction else None
        rows.append(view)
    return {"gasless_transactions": rows}


@router.post("/transactions/{sponsorship_id}/execute")
def execute_sponsorship(
    sponsorship_id: str,
    payload: Optional[ExecuteSponsorshipRequest] = Body(None),
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
    ctx: RequestContext = Depends(get_request_context),
):
    sponsorship = recorder.execute_sponsorship(
        user.id,
        sponsorship_id,
        signature_hash=payload.signature_hash if payload else None,
    )
    audit(recorder.db, user, ctx, "execute", "gasless_transaction", sponsorship_id)
    return {
        "message": "Gasless transaction executed",
        "gasless_transaction": recorder.view(sponsorship),
    }


@router.post("/transactions/{sponsorship_id}/fail")
def fail_sponsorship(
    sponsorship_id: str,
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
    ctx: RequestContext = Depends(get_request_context),
):
    sponsorship = recorder.fail_sponsorship(user.id, sponsorship_id)
    audit(recorder.db, user, ctx, "fail", "gasless_transaction", sponsorship_id)
    return {
        "message": "Gasless transaction marked as failed",
        "gasless_transaction": recorder.view(sponsorship),
    }


@router.get("/policies")
def list_policies(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return {"policies": [p.as_dict() for p in db.list_policies(user.id)]}


@router.post("/policies", status_code=201)
def create_policy(
    payload: PolicyCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    config = normalize_policy_config(payload.policy_type.value, payload.policy_config)
    policy = db.create_policy(
        user.id,
        policy_name=payload.policy_name,
        policy_type=payload.policy_type.value,
        policy_config=config,
        is_active=payload.is_active,
    )
    logger.info("Security policy %s (%s) created for %s", policy.id, policy.policy_type, user.email)
    audit(db, user, ctx, "create", "security_policy", policy.id)
    return {"message": "Security policy created successfully", "policy": policy.as_dict()}


@router.patch("/policies/{policy_id}")
def update_policy(
    policy_id: str,
    payload: PolicyUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    existing = next((p for p in db.list_policies(user.id) if p.id == policy_id), None)
    if existing is None:
        raise NotFound("Security policy not found")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "policy_config" in changes:
        changes["policy_config"] = normalize_policy_config(
            existing.policy_type, changes["policy_config"]
        )
    policy = db.update_policy(policy_id, user.id, **changes) if changes else existing
    if policy is None:
        raise NotFound("Security policy not found")
    logger.info("Security policy %s updated for %s", policy_id, user.email)
    audit(db, user, ctx, "update", "security_policy", policy_id, {"fields": sorted(changes)})
    return {"message": "Security policy updated successfully", "policy": policy.as_dict()}
