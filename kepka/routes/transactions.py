"""
Mint/burn/transfer transaction records.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from kepka.db import DbClient, UserRecord
from kepka.dependencies import (
    RequestContext,
    get_current_user,
    get_db_client,
    get_recorder,
    get_request_context,
)
from kepka.recorder import TransactionRecorder
from kepka.routes.common import audit
from kepka.schemas import Pagination, TransactionCreateRequest, TransactionStatusRequest
from kepka.types import TransactionStatus, TransactionType

router = APIRouter()


@router.get("")
def list_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[TransactionType] = Query(None),
    status: Optional[TransactionStatus] = Query(None),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    transactions, total = db.list_transactions(
        user.id,
        transaction_type=type.value if type else None,
        status=status,
        limit=limit,
        offset=offset,
    )
    return {
        "transactions": [t.as_dict() for t in transactions],
        "pagination": Pagination.of(total, limit, offset).model_dump(),
    }


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
):
    transaction = recorder.get_transaction(user.id, transaction_id)
    sponsorships = recorder.list_sponsorships(user.id, transaction_id=transaction_id)
    return {
        "transaction": transaction.as_dict(),
        "gasless_transactions": [recorder.view(s) for s in sponsorships],
    }


@router.post("", status_code=201)
def create_transaction(
    payload: TransactionCreateRequest,
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
    ctx: RequestContext = Depends(get_request_context),
):
    transaction = recorder.create_transaction(
        user.id,
        token_id=payload.token_id,
        transaction_type=payload.transaction_type.value,
        amount=payload.amount,
        tx_hash=payload.tx_hash,
        fee_ada=payload.fee_ada,
        metadata=payload.metadata,
    )
    audit(recorder.db, user, ctx, "create", "transaction", transaction.id)
    return {"message": "Transaction created successfully", "transaction": transaction.as_dict()}


@router.patch("/{transaction_id}/status")
def update_transaction_status(
    transaction_id: str,
    payload: TransactionStatusRequest,
    user: UserRecord = Depends(get_current_user),
    recorder: TransactionRecorder = Depends(get_recorder),
    ctx: RequestContext = Depends(get_request_context),
):
    transaction = recorder.update_transaction_status(user.id, transaction_id, payload.status)
    audit(
        recorder.db,
        user,
        ctx,
        "update_status",
        "transaction",
        transaction.id,
        {"status": transaction.status.value},
    )
    return {"message": "Transaction status updated", "transaction": transaction.as_dict()}
