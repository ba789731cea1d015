from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from creditgate.core.database import get_db
from creditgate.core.errors import BusinessError, BusinessErrorType, create_business_error, create_not_found_error
from creditgate.core.security import CurrentUser, get_current_user, require_admin, require_root
from creditgate.models.user import User
from creditgate.schemas.credits import (
    MemberQuotaDetail,
    MemberQuotaOut,
    ModelUsageOut,
    OrganizationCreditOut,
    OrganizationCreditSummary,
    RechargeRequest,
    SetBalanceRequest,
    SetMemberQuotaRequest,
    UsageStatistics,
)
from creditgate.services import ledger
from creditgate.services.credits_engine import ModelCreditService
from creditgate.services.organizations import OrganizationService
from creditgate.services.usage_stats import (
    compute_usage_statistics,
    list_usages,
    member_quota_details,
    organization_credit_summaries,
)


router = APIRouter()


def _user_organization_id(db: Session, user_id: str) -> str | None:
    return db.query(User.organization_id).filter(User.id == user_id).scalar()


def _assert_can_manage(db: Session, actor: CurrentUser, organization_id: str) -> None:
    """Root manages every organization; an admin only their own."""
    if actor.is_root:
        return
    own = _user_organization_id(db, actor.id)
    if not own:
        raise BusinessError(BusinessErrorType.ADMIN_MUST_BELONG_TO_ORGANIZATION, 403)
    if own != organization_id:
        raise BusinessError(BusinessErrorType.CANNOT_MANAGE_OTHER_ORGANIZATIONS, 403)


def _assert_member(db: Session, organization_id: str, user_id: str) -> None:
    if _user_organization_id(db, user_id) != organization_id:
        raise create_business_error(BusinessErrorType.USER_NOT_IN_ORGANIZATION)


@router.get("/me/organization-credit", response_model=OrganizationCreditOut | None)
async def my_organization_credit(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    organization_id = _user_organization_id(db, current_user.id)
    if not organization_id:
        return None
    return ledger.get_organization_credit(db, organization_id)


@router.get("/me", response_model=MemberQuotaOut | None)
async def my_quota(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    organization_id = _user_organization_id(db, current_user.id)
    if not organization_id:
        return None
    quota = ledger.get_member_quota(db, organization_id, current_user.id)
    if quota is None:
        quota = ledger.ensure_member_quota(db, organization_id, current_user.id)
        db.commit()
        db.refresh(quota)
    return quota


@router.get("/me/usages", response_model=list[ModelUsageOut])
async def my_usages(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return list_usages(db, user_id=current_user.id, start=start_date, end=end_date, limit=limit, offset=offset)


@router.get("/statistics", response_model=UsageStatistics)
async def usage_statistics(
    organization_id: str | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    if current_user.is_root:
        target = organization_id
    else:
        target = _user_organization_id(db, current_user.id)
        if not target:
            raise BusinessError(BusinessErrorType.ADMIN_MUST_BELONG_TO_ORGANIZATION, 403)
    return compute_usage_statistics(db, target)


@router.get("/organizations", response_model=list[OrganizationCreditSummary])
async def all_organization_credits(db: Session = Depends(get_db), _root: CurrentUser = Depends(require_root)):
    return organization_credit_summaries(db)


@router.get("/usages", response_model=list[ModelUsageOut])
async def all_usages(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    _root: CurrentUser = Depends(require_root),
):
    return list_usages(db, start=start_date, end=end_date, limit=limit, offset=offset)


@router.get("/organizations/{organization_id}/members", response_model=list[MemberQuotaDetail])
async def organization_member_quotas(
    organization_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_can_manage(db, current_user, organization_id)
    return member_quota_details(db, organization_id)


@router.get("/organizations/{organization_id}/usages", response_model=list[ModelUsageOut])
async def organization_usages(
    organization_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_can_manage(db, current_user, organization_id)
    return list_usages(
        db,
        organization_id=organization_id,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
    )


@router.post("/organizations/{organization_id}/members/{user_id}/reset", response_model=MemberQuotaOut)
async def reset_member_usage(
    organization_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_can_manage(db, current_user, organization_id)
    _assert_member(db, organization_id, user_id)
    quota = ModelCreditService(db).reset_member_usage(organization_id, user_id)
    if quota is None:
        raise create_not_found_error("Member quota")
    return quota


@router.put("/organizations/{organization_id}/members/{user_id}", response_model=MemberQuotaOut)
async def set_member_quota(
    organization_id: str,
    user_id: str,
    body: SetMemberQuotaRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_can_manage(db, current_user, organization_id)
    _assert_member(db, organization_id, user_id)
    try:
        return ModelCreditService(db).set_member_quota_limit(organization_id, user_id, body.limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _require_organization(db: Session, organization_id: str) -> None:
    if OrganizationService(db).get_organization(organization_id) is None:
        raise create_not_found_error("Organization")


@router.post("/organizations/{organization_id}/recharge", response_model=OrganizationCreditOut)
async def recharge_organization(
    organization_id: str,
    body: RechargeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_root),
):
    _require_organization(db, organization_id)
    try:
        return ModelCreditService(db).recharge_organization(
            organization_id,
            body.delta,
            operator_id=current_user.id,
            metadata=body.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/organizations/{organization_id}/balance", response_model=OrganizationCreditOut)
async def set_organization_balance(
    organization_id: str,
    body: SetBalanceRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_root),
):
    _require_organization(db, organization_id)
    return ModelCreditService(db).set_organization_balance(
        organization_id,
        body.balance,
        operator_id=current_user.id,
        metadata=body.metadata,
    )
