from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from creditgate.core.database import get_db
from creditgate.core.rbac import normalize_role_names
from creditgate.core.security import CurrentUser, get_current_user
from creditgate.models.organization import Organization
from creditgate.models.user import User
from creditgate.services import ledger
from creditgate.services.roles import RoleService


router = APIRouter(dependencies=[Depends(get_current_user)])


class OrganizationSummary(BaseModel):
    id: str
    name: str
    type: str


class MeResponse(BaseModel):
    id: str
    email: str
    full_name: str | None = None
    roles: list[str]
    permissions: list[str]
    organization: OrganizationSummary | None = None
    organization_balance: int | None = None
    quota_limit: int | None = None
    quota_used: int | None = None


@router.get("/me", response_model=MeResponse)
async def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    roles_service = RoleService(db)
    roles = normalize_role_names([*current_user.roles, *roles_service.get_user_role_names(current_user.id)])
    permissions = [p.code for p in roles_service.get_user_permissions(current_user.id)]

    user = db.query(User).filter(User.id == current_user.id).first()
    organization = None
    balance = None
    quota_limit = None
    quota_used = None
    if user is not None and user.organization_id:
        org = db.query(Organization).filter(Organization.id == user.organization_id).first()
        if org is not None:
            organization = OrganizationSummary(id=org.id, name=org.name, type=org.type)
        credit = ledger.get_organization_credit(db, user.organization_id)
        balance = int(credit.balance) if credit is not None else None
        quota = ledger.get_member_quota(db, user.organization_id, user.id)
        if quota is not None:
            quota_limit = quota.limit
            quota_used = int(quota.used or 0)

    return MeResponse(
        id=current_user.id,
        email=current_user.email or (user.email if user is not None and user.email else ""),
        full_name=(user.full_name if user is not None else None),
        roles=roles,
        permissions=permissions,
        organization=organization,
        organization_balance=balance,
        quota_limit=quota_limit,
        quota_used=quota_used,
    )
