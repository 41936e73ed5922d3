"""
Multi-signature wallets and the user's audit log.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from kepka.db import DbClient, UserRecord
from kepka.dependencies import (
    RequestContext,
    get_current_user,
    get_db_client,
    get_request_context,
)
from kepka.errors import Conflict, NotFound
from kepka.routes.common import audit
from kepka.schemas import (
    AuditLogCreateRequest,
    MultiSigWalletCreateRequest,
    Pagination,
    SignerInput,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/multi-sig-wallets")
def list_multisig_wallets(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return {"wallets": [w.as_dict() for w in db.list_multisig_wallets(user.id)]}


@router.post("/multi-sig-wallets", status_code=201)
def create_multisig_wallet(
    payload: MultiSigWalletCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    wallet = db.create_multisig_wallet(
        user.id,
        wallet_name=payload.wallet_name,
        required_signatures=payload.required_signatures,
        total_signers=payload.total_signers,
        wallet_address=payload.wallet_address,
        script_hash=payload.script_hash,
        signers=[s.model_dump() for s in payload.signers],
    )
    logger.info("Multi-sig wallet created: %s by %s", wallet.wallet_name, user.email)
    audit(db, user, ctx, "create", "multi_sig_wallet", wallet.id)
    return {"message": "Multi-sig wallet created successfully", "wallet": wallet.as_dict()}


@router.post("/multi-sig-wallets/{wallet_id}/signers", status_code=201)
def add_signer(
    wallet_id: str,
    payload: SignerInput,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    wallet = db.get_multisig_wallet(wallet_id, user_id=user.id)
    if wallet is None:
        raise NotFound("Multi-sig wallet not found")
    if any(s.signer_address == payload.signer_address for s in wallet.signers):
        raise Conflict("This signer address is already added to the wallet")
    if len(wallet.signers) >= wallet.total_signers:
        raise Conflict("Wallet already has its full set of signers")
    signer = db.add_wallet_signer(
        wallet_id,
        signer_address=payload.signer_address,
        public_key=payload.public_key,
        signer_name=payload.signer_name,
    )
    logger.info("Signer added to wallet %s: %s", wallet_id, payload.signer_address)
    audit(db, user, ctx, "add_signer", "multi_sig_wallet", wallet_id)
    return {"message": "Signer added successfully", "signer": signer.as_dict()}


@router.get("/audit-logs")
def list_audit_logs(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    action: Optional[str] = Query(None, min_length=1),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    logs, total = db.list_audit_logs(user.id, action=action, limit=limit, offset=offset)
    return {
        "audit_logs": [log.as_dict() for log in logs],
        "pagination": Pagination.of(total, limit, offset).model_dump(),
    }


@router.post("/audit-logs", status_code=201)
def create_audit_log(
    payload: AuditLogCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    entry = db.append_audit_log(
        user_id=user.id,
        action=payload.action,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        metadata=payload.metadata,
    )
    return {"message": "Audit log created successfully", "audit_log": entry.as_dict()}
