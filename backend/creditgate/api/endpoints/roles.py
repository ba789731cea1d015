from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from creditgate.core.authorization import assert_has_role
from creditgate.core.database import get_db
from creditgate.core.errors import BusinessError, BusinessErrorType
from creditgate.core.rbac import ROOT_ROLE, normalize_role_names
from creditgate.core.security import CurrentUser, require_admin
from creditgate.schemas.rbac import (
    AssignRolesOut,
    AssignRolesResponse,
    PermissionOut,
    RevokeRolesResponse,
    RoleChangeRequest,
    RoleOut,
)
from creditgate.services.roles import RoleService


router = APIRouter(dependencies=[Depends(require_admin)])


def _assert_may_touch_root(actor: CurrentUser, requested: list[str]) -> None:
    if ROOT_ROLE in normalize_role_names(requested):
        assert_has_role(actor.roles, ROOT_ROLE, error=BusinessError(BusinessErrorType.ONLY_ROOT_CAN_ASSIGN_ROOT_ROLE, 403))


@router.get("", response_model=list[RoleOut])
async def list_roles(db: Session = Depends(get_db)):
    return RoleService(db).list_roles()


@router.get("/users/{user_id}", response_model=list[RoleOut])
async def get_user_roles(user_id: str, db: Session = Depends(get_db)):
    return RoleService(db).get_user_roles(user_id)


@router.get("/users/{user_id}/permissions", response_model=list[PermissionOut])
async def get_user_permissions(user_id: str, db: Session = Depends(get_db)):
    return RoleService(db).get_user_permissions(user_id)


@router.post("/users/{user_id}/assign", response_model=AssignRolesResponse)
async def assign_roles(
    user_id: str,
    body: RoleChangeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_may_touch_root(current_user, body.roles)
    service = RoleService(db)
    result = service.assign_roles(user_id, body.roles)
    return AssignRolesResponse(
        result=AssignRolesOut(assigned=result.assigned, missing=result.missing),
        roles=[RoleOut.model_validate(r) for r in service.get_user_roles(user_id)],
    )


@router.post("/users/{user_id}/revoke", response_model=RevokeRolesResponse)
async def revoke_roles(
    user_id: str,
    body: RoleChangeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    _assert_may_touch_root(current_user, body.roles)
    service = RoleService(db)
    removed = service.revoke_roles(user_id, body.roles)
    return RevokeRolesResponse(
        removed=removed,
        roles=[RoleOut.model_validate(r) for r in service.get_user_roles(user_id)],
    )
