from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from creditgate.core.errors import CreditErrorCode, ModelCreditError, create_internal_error
from creditgate.models.model_credit import MemberQuota, ModelCreditTransaction, ModelUsage, OrganizationCredit
from creditgate.models.user import User
from creditgate.services import ledger


logger = logging.getLogger(__name__)


USAGE_TYPES: frozenset[str] = frozenset({"text", "image", "threeD", "audio", "other"})

REASON_RECHARGE = "recharge"
REASON_ADJUST = "adjust"


@dataclass(frozen=True)
class AllowanceContext:
    organization_id: str
    user_id: str
    required_credits: int


@dataclass
class UsageInput:
    usage_type: str
    model: str | None = None
    provider: str | None = None
    count_used: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class ChargeUsageInput:
    user_id: str
    credits: int
    usage: UsageInput
    organization_id: str | None = None
    reason: str | None = None


@dataclass
class ChargeUsageResult:
    organization: OrganizationCredit
    member_quota: MemberQuota
    usage: ModelUsage
    transaction: ModelCreditTransaction


class ModelCreditService:
    """Two-phase gate over organization balances and member quotas.

    `ensure_allowance` is a pre-flight check only; nothing is held between it and
    `charge`, so concurrent requests can drive a balance below zero. `charge`
    applies its four writes in one transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve_organization_id(self, user_id: str) -> str:
        organization_id = self.db.query(User.organization_id).filter(User.id == user_id).scalar()
        if not organization_id:
            raise ModelCreditError(
                CreditErrorCode.USER_ORGANIZATION_REQUIRED,
                "User must belong to an organization to use credits",
            )
        return str(organization_id)

    def ensure_allowance(
        self,
        user_id: str,
        required_credits: int,
        organization_id: str | None = None,
    ) -> AllowanceContext:
        required = int(required_credits or 0)
        org_id = organization_id or self.resolve_organization_id(user_id)

        try:
            credit = ledger.ensure_organization_credit(self.db, org_id)
            quota = ledger.ensure_member_quota(self.db, org_id, user_id)
            balance = int(credit.balance or 0)
            limit = quota.limit
            used = int(quota.used or 0)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if required > 0 and balance < required:
            logger.info(
                "credits.allowance.denied reason=balance organization_id=%s user_id=%s required=%s balance=%s",
                org_id,
                user_id,
                required,
                balance,
            )
            raise ModelCreditError(
                CreditErrorCode.ORGANIZATION_CREDIT_INSUFFICIENT,
                "Organization credit balance is insufficient",
            )

        if required > 0 and limit is not None and used + required > int(limit):
            logger.info(
                "credits.allowance.denied reason=quota organization_id=%s user_id=%s required=%s used=%s limit=%s",
                org_id,
                user_id,
                required,
                used,
                limit,
            )
            raise ModelCreditError(CreditErrorCode.MEMBER_QUOTA_EXCEEDED, "Member quota has been exhausted")

        return AllowanceContext(organization_id=org_id, user_id=user_id, required_credits=required)

    def charge(self, request: ChargeUsageInput, context: AllowanceContext | None = None) -> ChargeUsageResult:
        credits = int(request.credits)
        if credits < 0:
            raise ValueError("credits must be a non-negative number")
        if request.usage.usage_type not in USAGE_TYPES:
            raise ValueError(f"unsupported usage type: {request.usage.usage_type}")

        if context is None:
            context = self.ensure_allowance(request.user_id, credits, organization_id=request.organization_id)
        else:
            if request.organization_id and request.organization_id != context.organization_id:
                raise ValueError("charge organization does not match the allowance context")
            if request.user_id != context.user_id:
                raise ValueError("charge user does not match the allowance context")

        org_id = context.organization_id
        user_id = context.user_id
        usage = request.usage

        try:
            if credits == 0:
                organization = ledger.ensure_organization_credit(self.db, org_id)
                member_quota = ledger.ensure_member_quota(self.db, org_id, user_id)
            else:
                organization = ledger.adjust_balance(self.db, org_id, -credits)
                if organization is None:
                    raise ModelCreditError(
                        CreditErrorCode.ORGANIZATION_CREDIT_INSUFFICIENT,
                        "Failed to adjust organization credit balance",
                    )
                member_quota = ledger.increment_used(self.db, org_id, user_id, credits)
                if member_quota is None:
                    raise ModelCreditError(CreditErrorCode.MEMBER_QUOTA_EXCEEDED, "Failed to update member quota")

            usage_row = ledger.create_model_usage(
                self.db,
                organization_id=org_id,
                user_id=user_id,
                usage_type=usage.usage_type,
                credit_cost=credits,
                model=usage.model,
                provider=usage.provider,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=usage.total_tokens,
                count_used=usage.count_used,
                metadata=usage.metadata,
            )
            balance_after = int(organization.balance or 0)
            transaction = ledger.create_credit_transaction(
                self.db,
                organization_id=org_id,
                user_id=user_id,
                usage_id=usage_row.id,
                delta=-credits,
                balance_after=balance_after,
                reason=request.reason or usage.usage_type,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if balance_after < 0:
            logger.warning(
                "credits.charge.negative_balance organization_id=%s user_id=%s credits=%s balance=%s",
                org_id,
                user_id,
                credits,
                balance_after,
            )
        logger.info(
            "credits.charge.ok organization_id=%s user_id=%s usage_type=%s credits=%s balance=%s",
            org_id,
            user_id,
            usage.usage_type,
            credits,
            balance_after,
        )
        return ChargeUsageResult(
            organization=organization,
            member_quota=member_quota,
            usage=usage_row,
            transaction=transaction,
        )

    def recharge_organization(
        self,
        organization_id: str,
        delta: int,
        operator_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OrganizationCredit:
        delta = int(delta)
        if delta == 0:
            raise ValueError("Recharge delta cannot be zero")

        try:
            ledger.ensure_organization_credit(self.db, organization_id)
            organization = ledger.adjust_balance(self.db, organization_id, delta)
            if organization is None:
                raise create_internal_error("Failed to adjust organization balance")
            ledger.create_credit_transaction(
                self.db,
                organization_id=organization_id,
                user_id=operator_id,
                delta=delta,
                balance_after=int(organization.balance or 0),
                reason=REASON_RECHARGE if delta > 0 else REASON_ADJUST,
                metadata=metadata,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "credits.recharge.ok organization_id=%s delta=%s operator_id=%s",
            organization_id,
            delta,
            operator_id,
        )
        return organization

    def set_organization_balance(
        self,
        organization_id: str,
        balance: int,
        operator_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OrganizationCredit:
        try:
            current = ledger.ensure_organization_credit(self.db, organization_id)
            delta = int(balance) - int(current.balance or 0)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if delta == 0:
            return current
        return self.recharge_organization(organization_id, delta, operator_id=operator_id, metadata=metadata)

    def reset_member_usage(self, organization_id: str, user_id: str) -> MemberQuota | None:
        try:
            quota = ledger.reset_used(self.db, organization_id, user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return quota

    def set_member_quota_limit(self, organization_id: str, user_id: str, limit: int | None) -> MemberQuota:
        if limit is not None and int(limit) < 0:
            raise ValueError("quota limit must be >= 0 or None")

        try:
            ledger.ensure_member_quota(self.db, organization_id, user_id)
            quota = ledger.set_quota_limit(self.db, organization_id, user_id, None if limit is None else int(limit))
            if quota is None:
                raise ModelCreditError(
                    CreditErrorCode.USER_ORGANIZATION_REQUIRED,
                    "Member quota not found for specified user",
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return quota
