from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditgate.core.errors import (
    BusinessError,
    BusinessErrorType,
    create_business_error,
    create_not_found_error,
)
from creditgate.core.rbac import ORGANIZATION_TYPE_MANAGEMENT, ORGANIZATION_TYPES, USER_ROLE
from creditgate.models.organization import Organization
from creditgate.models.user import User
from creditgate.services.roles import get_user_roles

if TYPE_CHECKING:
    from creditgate.core.security import CurrentUser


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "type", "parent_id", "max_users")


class OrganizationService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_organizations(self) -> list[Organization]:
        return self.db.query(Organization).order_by(Organization.created_at.asc(), Organization.name.asc()).all()

    def get_organization(self, organization_id: str) -> Organization | None:
        return self.db.query(Organization).filter(Organization.id == organization_id).first()

    def has_users(self, organization_id: str) -> bool:
        return self.db.query(User.id).filter(User.organization_id == organization_id).first() is not None

    def user_count(self, organization_id: str) -> int:
        return self.db.query(User).filter(User.organization_id == organization_id).count()

    def _management_exists(self) -> bool:
        return (
            self.db.query(Organization.id).filter(Organization.type == ORGANIZATION_TYPE_MANAGEMENT).first()
            is not None
        )

    def create_organization(
        self,
        name: str,
        type: str,
        parent_id: str | None = None,
        max_users: int | None = None,
    ) -> Organization:
        name = (name or "").strip()
        if not name:
            raise create_business_error(BusinessErrorType.ORGANIZATION_NAME_REQUIRED)
        if type not in ORGANIZATION_TYPES:
            raise create_business_error(BusinessErrorType.ORGANIZATION_TYPE_UNSUPPORTED)
        if type == ORGANIZATION_TYPE_MANAGEMENT and self._management_exists():
            raise create_business_error(BusinessErrorType.MANAGEMENT_ORGANIZATION_ALREADY_EXISTS)

        org = Organization(name=name, type=type, parent_id=parent_id, max_users=max_users)
        self.db.add(org)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise create_business_error(BusinessErrorType.ORGANIZATION_NAME_TAKEN)
        self.db.refresh(org)
        logger.info("organizations.create.ok id=%s type=%s", org.id, org.type)
        return org

    def update_organization(self, organization_id: str, changes: dict[str, Any]) -> Organization:
        """Apply the provided fields only; keys absent from `changes` are left as they are."""
        org = self.get_organization(organization_id)
        if org is None:
            raise create_not_found_error("Organization")

        new_type = changes.get("type")
        if org.type == ORGANIZATION_TYPE_MANAGEMENT and new_type:
            raise create_business_error(BusinessErrorType.ORGANIZATION_TYPE_IMMUTABLE)
        if new_type and new_type not in ORGANIZATION_TYPES:
            raise create_business_error(BusinessErrorType.ORGANIZATION_TYPE_UNSUPPORTED)
        if new_type == ORGANIZATION_TYPE_MANAGEMENT and self._management_exists():
            raise create_business_error(BusinessErrorType.MANAGEMENT_ORGANIZATION_ALREADY_EXISTS)
        if "name" in changes:
            name = (changes.get("name") or "").strip()
            if not name:
                raise create_business_error(BusinessErrorType.ORGANIZATION_NAME_REQUIRED)
            changes = {**changes, "name": name}

        for key in _UPDATABLE_FIELDS:
            if key not in changes:
                continue
            if key == "type" and not changes[key]:
                continue
            setattr(org, key, changes[key])

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise create_business_error(BusinessErrorType.ORGANIZATION_NAME_TAKEN)
        self.db.refresh(org)
        logger.info("organizations.update.ok id=%s fields=%s", org.id, ",".join(sorted(changes)))
        return org

    def delete_organization(self, organization_id: str) -> Organization:
        org = self.get_organization(organization_id)
        if org is None:
            raise create_not_found_error("Organization")
        if org.type == ORGANIZATION_TYPE_MANAGEMENT:
            raise create_business_error(BusinessErrorType.ORGANIZATION_MANAGEMENT_UNDELETABLE)
        if self.has_users(organization_id):
            raise create_business_error(BusinessErrorType.ORGANIZATION_HAS_USERS)

        self.db.delete(org)
        self.db.commit()
        logger.info("organizations.delete.ok id=%s", organization_id)
        return org

    def set_user_organization(self, actor: CurrentUser, user_id: str, organization_id: str | None) -> User:
        """Move `user_id` into `organization_id`, or out of any organization when it is None.

        Root may move anyone anywhere. An admin may only move regular users, only into
        their own organization, and only users that are unassigned or already theirs.
        Joining a new organization counts against its `max_users`.
        """
        target = self.db.query(User).filter(User.id == user_id).first()
        if target is None:
            raise create_not_found_error("User")

        if not actor.is_root:
            own = self.db.query(User.organization_id).filter(User.id == actor.id).scalar()
            if not own:
                raise BusinessError(BusinessErrorType.ADMIN_MUST_BELONG_TO_ORGANIZATION, 403)
            if organization_id and organization_id != own:
                raise BusinessError(BusinessErrorType.CANNOT_MANAGE_OTHER_ORGANIZATIONS, 403)
            target_roles = {role.name for role in get_user_roles(self.db, user_id)}
            if USER_ROLE not in target_roles:
                raise BusinessError(BusinessErrorType.ONLY_STUDENTS_CAN_BE_MANAGED, 403)
            if target.organization_id and target.organization_id != own and organization_id != own:
                raise BusinessError(BusinessErrorType.CANNOT_MOVE_STUDENTS_OUTSIDE_ORGANIZATION, 403)

        if organization_id:
            org = self.get_organization(organization_id)
            if org is None:
                raise create_not_found_error("Organization")
            if (
                target.organization_id != organization_id
                and org.max_users is not None
                and self.user_count(organization_id) >= org.max_users
            ):
                raise create_business_error(
                    BusinessErrorType.ORGANIZATION_MAX_USERS_REACHED,
                    f"Organization has reached its maximum of {org.max_users} users",
                )

        previous = target.organization_id
        target.organization_id = organization_id
        self.db.commit()
        self.db.refresh(target)
        logger.info(
            "organizations.member.set user_id=%s from=%s to=%s actor=%s",
            user_id,
            previous or "",
            organization_id or "",
            actor.id,
        )
        return target
