"""
Pydantic request/response schemas for the Kepka API.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, model_validator

from kepka.types import (
    PolicyType,
    ReportType,
    TransactionStatus,
    TransactionType,
    WalletType,
)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def of(cls, total: int, limit: int, offset: int) -> "Pagination":
        return cls(total=total, limit=limit, offset=offset, has_more=total > offset + limit)


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    database: bool
    environment: str


# Auth


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=2, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    reset_token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


# Users


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    wallet_address: Optional[str] = Field(default=None, min_length=10)


class WalletConnectionRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1)
    wallet_type: WalletType
    is_primary: bool = False


# Tokens


class TokenCreateRequest(BaseModel):
    token_name: str = Field(..., min_length=1, max_length=100)
    symbol: str = Field(..., min_length=1, max_length=20)
    policy_id: str = Field(..., min_length=1)
    asset_name: str = Field(..., min_length=1)
    decimals: int = Field(default=6, ge=0, le=18)
    total_supply: int = Field(default=0, ge=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    image_url: Optional[HttpUrl] = None


class TokenUpdateRequest(BaseModel):
    description: Optional[str] = Field(default=None, max_length=1000)
    image_url: Optional[HttpUrl] = None


class TokenReportRequest(BaseModel):
    report_type: ReportType
    description: str = Field(..., min_length=1, max_length=2000)


# Transactions


class TransactionCreateRequest(BaseModel):
    token_id: str = Field(..., min_length=1)
    transaction_type: TransactionType
    amount: int = Field(..., ge=1)
    tx_hash: str = Field(..., min_length=1)
    fee_ada: int = Field(default=0, ge=0)
    metadata: Optional[dict[str, Any]] = None


class TransactionStatusRequest(BaseModel):
    status: TransactionStatus


# Gasless


class SponsorRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1)
    estimated_fee: int = Field(..., ge=1)


class ExecuteSponsorshipRequest(BaseModel):
    signature_hash: Optional[str] = Field(default=None, min_length=1)


class PolicyCreateRequest(BaseModel):
    policy_name: str = Field(..., min_length=1, max_length=100)
    policy_type: PolicyType
    policy_config: dict[str, Any]
    is_active: bool = True


class PolicyUpdateRequest(BaseModel):
    policy_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    policy_config: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


# Security


class SignerInput(BaseModel):
    signer_address: str = Field(..., min_length=1)
    public_key: str = Field(..., min_length=1)
    signer_name: Optional[str] = Field(default=None, max_length=100)


class MultiSigWalletCreateRequest(BaseModel):
    wallet_name: str = Field(..., min_length=1)
    required_signatures: int = Field(..., ge=1)
    total_signers: int = Field(..., ge=1)
    wallet_address: str = Field(..., min_length=1)
    script_hash: str = Field(..., min_length=1)
    signers: list[SignerInput] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_threshold(self) -> "MultiSigWalletCreateRequest":
        if self.required_signatures > self.total_signers:
            raise ValueError("required_signatures cannot exceed total_signers")
        if len(self.signers) > self.total_signers:
            raise ValueError("more signers supplied than total_signers")
        addresses = [s.signer_address for s in self.signers]
        if len(set(addresses)) != len(addresses):
            raise ValueError("signer addresses must be unique")
        return self


class AuditLogCreateRequest(BaseModel):
    action: str = Field(..., min_length=1)
    resource_type: str = Field(..., min_length=1)
    resource_id: Optional[str] = Field(default=None, min_length=1)
    metadata: Optional[dict[str, Any]] = None


# Payments


class PaymentIntentRequest(BaseModel):
    amount: float = Field(..., ge=0.5)
    currency: Literal["usd", "eur", "gbp"] = "usd"
    description: Optional[str] = Field(default=None, max_length=500)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubscriptionCreateRequest(BaseModel):
    price_id: str = Field(..., min_length=1)


# Exchange rates


class ExchangeRateInput(BaseModel):
    token_symbol: str = Field(..., min_length=1, max_length=20)
    price_usd: float = Field(..., ge=0)
    price_ada: float = Field(..., ge=0)
    volume_24h: float = Field(default=0, ge=0)
    change_24h: float = 0
    market_cap: float = Field(default=0, ge=0)


# Admin


class SuspendUserRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ResolveReportRequest(BaseModel):
    status: Literal["resolved", "dismissed"]
    admin_notes: str = Field(..., min_length=1)


class SettingUpdateRequest(BaseModel):
    setting_value: Any
