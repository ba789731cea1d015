from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from creditgate.core.database import get_db
from creditgate.core.security import CurrentUser, require_admin, require_root
from creditgate.models.user import User
from creditgate.schemas.rbac import (
    OrganizationCreate,
    OrganizationOut,
    OrganizationUpdate,
    SetUserOrganizationRequest,
    UserOrganizationOut,
)
from creditgate.services.organizations import OrganizationService


router = APIRouter()


@router.get("", response_model=list[OrganizationOut])
async def list_organizations(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_admin)):
    service = OrganizationService(db)
    if current_user.is_root:
        return service.list_organizations()

    organization_id = db.query(User.organization_id).filter(User.id == current_user.id).scalar()
    if not organization_id:
        return []
    org = service.get_organization(organization_id)
    return [org] if org is not None else []


@router.post("", response_model=OrganizationOut, status_code=201)
async def create_organization(
    body: OrganizationCreate,
    db: Session = Depends(get_db),
    _root: CurrentUser = Depends(require_root),
):
    return OrganizationService(db).create_organization(
        body.name,
        body.type,
        parent_id=body.parent_id,
        max_users=body.max_users,
    )


@router.patch("/{organization_id}", response_model=OrganizationOut)
async def update_organization(
    organization_id: str,
    body: OrganizationUpdate,
    db: Session = Depends(get_db),
    _root: CurrentUser = Depends(require_root),
):
    changes = body.model_dump(include=body.model_fields_set)
    return OrganizationService(db).update_organization(organization_id, changes)


@router.delete("/{organization_id}")
async def delete_organization(
    organization_id: str,
    db: Session = Depends(get_db),
    _root: CurrentUser = Depends(require_root),
):
    OrganizationService(db).delete_organization(organization_id)
    return {"success": True}


@router.put("/members/{user_id}", response_model=UserOrganizationOut)
async def set_user_organization(
    user_id: str,
    body: SetUserOrganizationRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    return OrganizationService(db).set_user_organization(current_user, user_id, body.organization_id)
