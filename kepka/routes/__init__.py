"""
HTTP routes for the Kepka API.
"""

from fastapi import APIRouter

from kepka.routes import (
    admin,
    auth,
    exchange_rates,
    gasless,
    payments,
    security,
    tokens,
    transactions,
    users,
)

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(tokens.router, prefix="/tokens", tags=["tokens"])
router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
router.include_router(gasless.router, prefix="/gasless", tags=["gasless"])
router.include_router(security.router, prefix="/security", tags=["security"])
router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(exchange_rates.router, prefix="/exchange-rates", tags=["exchange-rates"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
