from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class RoleOut(BaseModel):
    id: int
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    is_system: bool = False
    is_active: bool = True

    class Config:
        from_attributes = True


class PermissionOut(BaseModel):
    id: int
    code: str
    name: Optional[str] = None
    category: Optional[str] = None

    class Config:
        from_attributes = True


class RoleChangeRequest(BaseModel):
    roles: List[str] = Field(min_length=1)


class AssignRolesOut(BaseModel):
    assigned: int
    missing: List[str]


class AssignRolesResponse(BaseModel):
    result: AssignRolesOut
    roles: List[RoleOut]


class RevokeRolesResponse(BaseModel):
    removed: int
    roles: List[RoleOut]


class OrganizationOut(BaseModel):
    id: str
    name: str
    type: str
    parent_id: Optional[str] = None
    max_users: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrganizationCreate(BaseModel):
    name: str
    type: str
    parent_id: Optional[str] = None
    max_users: Optional[int] = None


class OrganizationUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    parent_id: Optional[str] = None
    max_users: Optional[int] = None


class SetUserOrganizationRequest(BaseModel):
    organization_id: Optional[str] = None


class UserOrganizationOut(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True
