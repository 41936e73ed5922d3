"""
Profile and wallet-connection routes for the signed-in user.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from kepka.db import DbClient, UserRecord
from kepka.dependencies import (
    RequestContext,
    get_current_user,
    get_db_client,
    get_request_context,
)
from kepka.routes.common import audit
from kepka.schemas import ProfileUpdateRequest, WalletConnectionRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/profile")
def get_profile(user: UserRecord = Depends(get_current_user)):
    return {"profile": user.as_dict()}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    changes = payload.model_dump(exclude_unset=True)
    updated = db.update_user(user.id, **changes) if changes else user
    audit(db, user, ctx, "update", "profile", user.id, {"fields": sorted(changes)})
    logger.info("Profile updated for %s", user.email)
    return {"message": "Profile updated successfully", "profile": updated.as_dict()}


@router.get("/wallet-connections")
def list_wallet_connections(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    wallets = db.list_wallet_connections(user.id)
    return {"wallet_connections": [w.as_dict() for w in wallets]}


@router.post("/wallet-connections", status_code=201)
def add_wallet_connection(
    payload: WalletConnectionRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    wallet = db.add_wallet_connection(
        user.id,
        payload.wallet_address,
        payload.wallet_type.value,
        is_primary=payload.is_primary,
    )
    audit(db, user, ctx, "connect", "wallet", wallet.id)
    logger.info("Wallet %s connected for %s", payload.wallet_type.value, user.email)
    return {"message": "Wallet connected successfully", "wallet_connection": wallet.as_dict()}
