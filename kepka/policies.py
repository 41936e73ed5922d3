"""
User security policies and the evaluator that applies them to an action.

Each policy type has its own typed config model; the stored ``policy_config``
blob is parsed through ``PolicyConfig`` (a union discriminated on
``policy_type``) before it is evaluated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from kepka.db import DbClient, PolicyRecord, utcnow
from kepka.errors import ValidationFailed

logger = logging.getLogger(__name__)

SPONSOR_ACTION = "gasless.sponsor"


class _PolicyConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RateLimitConfig(_PolicyConfigBase):
    policy_type: Literal["rate_limit"] = "rate_limit"
    hours: float = Field(default=24, gt=0)
    max_transactions: int = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("max_transactions", "max_requests"),
    )


class AmountLimitConfig(_PolicyConfigBase):
    policy_type: Literal["amount_limit"] = "amount_limit"
    max_amount: int = Field(..., ge=0)


class TimeLockConfig(_PolicyConfigBase):
    policy_type: Literal["time_lock"] = "time_lock"
    allowed_hours: list[Annotated[int, Field(ge=0, le=23)]] = Field(default_factory=list)


class WhitelistConfig(_PolicyConfigBase):
    policy_type: Literal["whitelist"] = "whitelist"
    allowed_ips: list[str] = Field(default_factory=list)


PolicyConfig = Annotated[
    Union[RateLimitConfig, AmountLimitConfig, TimeLockConfig, WhitelistConfig],
    Field(discriminator="policy_type"),
]

_config_adapter = TypeAdapter(PolicyConfig)


def parse_policy_config(policy_type: str, config: dict) -> PolicyConfig:
    """Validate a raw config blob against the model for ``policy_type``."""
    try:
        return _config_adapter.validate_python({**(config or {}), "policy_type": policy_type})
    except ValidationError as exc:
        raise ValidationFailed(
            "Invalid policy configuration",
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


def normalize_policy_config(policy_type: str, config: dict) -> dict:
    """Return the canonical blob stored for a policy."""
    parsed = parse_policy_config(policy_type, config)
    return parsed.model_dump(exclude={"policy_type"})


@dataclass
class ActionDescriptor:
    kind: str
    amount: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)
    origin_ip: Optional[str] = None


@dataclass
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None
    policy_id: Optional[str] = None
    policy_type: Optional[str] = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)


class PolicyEvaluator:
    """
    Applies a user's active policies to an action. All policies must pass;
    the first violated one decides the denial. Evaluation only reads.
    """

    def __init__(self, db: DbClient):
        self.db = db

    def evaluate(
        self,
        user_id: str,
        action: ActionDescriptor,
        policies: Iterable[PolicyRecord],
    ) -> PolicyDecision:
        for policy in policies:
            if not policy.is_active:
                continue
            decision = self._evaluate_one(user_id, action, policy)
            if not decision.allowed:
                logger.warning(
                    "Policy %s (%s) denied %s for user %s: %s",
                    policy.id,
                    policy.policy_type,
                    action.kind,
                    user_id,
                    decision.reason,
                )
                return decision
        return PolicyDecision.allow()

    def _evaluate_one(
        self, user_id: str, action: ActionDescriptor, policy: PolicyRecord
    ) -> PolicyDecision:
        def deny(reason: str) -> PolicyDecision:
            return PolicyDecision(
                allowed=False,
                reason=reason,
                policy_id=policy.id,
                policy_type=policy.policy_type,
            )

        try:
            config = parse_policy_config(policy.policy_type, policy.policy_config)
        except ValidationFailed:
            # A stored policy we cannot read is treated as violated.
            return deny(f"Policy '{policy.policy_name}' has an invalid configuration")

        if isinstance(config, RateLimitConfig):
            since = action.timestamp - timedelta(hours=config.hours)
            try:
                count = self._recent_count(user_id, action.kind, since)
            except Exception:
                logger.exception("Rate limit history lookup failed for user %s", user_id)
                return deny("Unable to verify rate limit")
            if count >= config.max_transactions:
                return deny(
                    f"Maximum {config.max_transactions} transactions per "
                    f"{config.hours:g} hours"
                )
            return PolicyDecision.allow()

        if isinstance(config, AmountLimitConfig):
            if action.amount is not None and action.amount > config.max_amount:
                return deny(f"Maximum amount limit is {config.max_amount}")
            return PolicyDecision.allow()

        if isinstance(config, TimeLockConfig):
            if action.timestamp.hour not in config.allowed_hours:
                return deny("Action is not allowed at this time of day")
            return PolicyDecision.allow()

        if isinstance(config, WhitelistConfig):
            if not action.origin_ip or action.origin_ip not in config.allowed_ips:
                return deny("Request origin is not whitelisted")
            return PolicyDecision.allow()

        return PolicyDecision.allow()

    def _recent_count(self, user_id: str, kind: str, since: datetime) -> int:
        if kind == SPONSOR_ACTION:
            return self.db.count_sponsorships_since(user_id, since)
        return self.db.count_audit_logs_since(user_id, kind, since)
