"""
Token price feed. Reads are public; updates require an admin.
"""

from __future__ import annotations

import logging
from typing import Union

from fastapi import APIRouter, Body, Depends

from kepka.db import DbClient, UserRecord
from kepka.dependencies import RequestContext, get_db_client, get_request_context, require_admin
from kepka.errors import NotFound, ValidationFailed
from kepka.routes.common import audit
from kepka.schemas import ExchangeRateInput

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def list_exchange_rates(db: DbClient = Depends(get_db_client)):
    rates = db.list_exchange_rates()
    return {
        "rates": [rate.as_dict() for rate in rates],
        "last_updated": rates[0].as_dict()["updated_at"] if rates else None,
    }


@router.get("/{symbol}")
def get_exchange_rate(symbol: str, db: DbClient = Depends(get_db_client)):
    rate = db.get_exchange_rate(symbol)
    if rate is None:
        raise NotFound(f"No exchange rate found for symbol: {symbol}")
    return {"rate": rate.as_dict()}


@router.post("")
def update_exchange_rates(
    payload: Union[list[ExchangeRateInput], ExchangeRateInput] = Body(...),
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    items = payload if isinstance(payload, list) else [payload]
    if not items:
        raise ValidationFailed("At least one exchange rate is required")
    rates = db.upsert_exchange_rates([item.model_dump() for item in items])
    symbols = [rate.token_symbol for rate in rates]
    logger.info("Exchange rates updated for %d tokens by %s", len(rates), admin.id)
    audit(db, admin, ctx, "update", "exchange_rate", metadata={"symbols": symbols})
    return {
        "message": "Exchange rates updated successfully",
        "rates": [rate.as_dict() for rate in rates],
    }
