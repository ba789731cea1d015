from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditgate.core.database import dialect_insert
from creditgate.core.rbac import ADMIN_ROLE, ROOT_ROLE, USER_ROLE, normalize_role_names
from creditgate.models.rbac import Permission, Role, RolePermission, UserRole


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleIdentifier:
    id: int
    name: str


@dataclass
class AssignRolesResult:
    assigned: int = 0
    missing: list[str] = field(default_factory=list)


# Role store. Every function takes the session (or an active transaction's session) explicitly.


def add_user_roles(db: Session, user_id: str, role_ids: Iterable[int]) -> None:
    """Attach roles to a user; existing (user, role) pairs are left untouched."""
    role_ids = list(dict.fromkeys(int(r) for r in role_ids))
    if not role_ids:
        return

    rows = [{"user_id": user_id, "role_id": role_id} for role_id in role_ids]
    stmt = dialect_insert(db, UserRole.__table__)
    if stmt is not None:
        db.execute(stmt.values(rows).on_conflict_do_nothing(index_elements=["user_id", "role_id"]))
        return

    for row in rows:
        try:
            with db.begin_nested():
                db.execute(UserRole.__table__.insert().values(**row))
        except IntegrityError:
            continue


def remove_user_roles(db: Session, user_id: str, role_ids: Iterable[int]) -> int:
    """Detach roles from a user; returns how many associations actually existed."""
    role_ids = list(dict.fromkeys(int(r) for r in role_ids))
    if not role_ids:
        return 0
    removed = (
        db.query(UserRole)
        .filter(UserRole.user_id == user_id, UserRole.role_id.in_(role_ids))
        .delete(synchronize_session=False)
    )
    return int(removed or 0)


def get_active_roles_by_names(db: Session, names: list[str]) -> list[RoleIdentifier]:
    if not names:
        return []
    rows = (
        db.query(Role.id, Role.name)
        .filter(Role.name.in_(names), Role.is_active.is_(True))
        .order_by(Role.id.asc())
        .all()
    )
    return [RoleIdentifier(id=int(r.id), name=r.name) for r in rows]


def get_roles_by_names(db: Session, names: list[str]) -> list[RoleIdentifier]:
    if not names:
        return []
    rows = db.query(Role.id, Role.name).filter(Role.name.in_(names)).order_by(Role.id.asc()).all()
    return [RoleIdentifier(id=int(r.id), name=r.name) for r in rows]


def get_user_roles(db: Session, user_id: str, active_only: bool = False) -> list[Role]:
    q = db.query(Role).join(UserRole, UserRole.role_id == Role.id).filter(UserRole.user_id == user_id)
    if active_only:
        q = q.filter(Role.is_active.is_(True))
    return q.order_by(UserRole.id.asc()).all()


def _unique_by_code(permissions: Iterable[Permission]) -> list[Permission]:
    unique: OrderedDict[str, Permission] = OrderedDict()
    for permission in permissions:
        unique[permission.code] = permission
    return list(unique.values())


def get_permissions_by_role_ids(db: Session, role_ids: list[int]) -> list[Permission]:
    if not role_ids:
        return []
    rows = (
        db.query(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id.in_(role_ids))
        .order_by(RolePermission.id.asc())
        .all()
    )
    return _unique_by_code(rows)


def get_user_permissions(db: Session, user_id: str) -> list[Permission]:
    """Permissions granted through the user's active roles, one entry per code."""
    rows = (
        db.query(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .join(Role, Role.id == UserRole.role_id)
        .filter(UserRole.user_id == user_id, Role.is_active.is_(True))
        .order_by(UserRole.id.asc(), RolePermission.id.asc())
        .all()
    )
    return _unique_by_code(rows)


def list_active_roles(db: Session) -> list[Role]:
    return db.query(Role).filter(Role.is_active.is_(True)).order_by(Role.id.asc()).all()


class RoleService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_roles(self) -> list[Role]:
        return list_active_roles(self.db)

    def get_user_roles(self, user_id: str) -> list[Role]:
        return get_user_roles(self.db, user_id)

    def get_user_role_names(self, user_id: str) -> list[str]:
        """Names of the user's active roles, read fresh from storage on every call."""
        return [role.name for role in get_user_roles(self.db, user_id, active_only=True)]

    def get_user_permissions(self, user_id: str) -> list[Permission]:
        return get_user_permissions(self.db, user_id)

    def assign_roles(self, user_id: str, role_names: Iterable[str]) -> AssignRolesResult:
        normalized = normalize_role_names(role_names)
        if not normalized:
            return AssignRolesResult()

        found = get_active_roles_by_names(self.db, normalized)
        found_names = {role.name for role in found}
        missing = [name for name in normalized if name not in found_names]
        if missing:
            logger.warning("roles.assign.missing user_id=%s roles=%s", user_id, ",".join(missing))
        if not found:
            return AssignRolesResult(assigned=0, missing=missing)

        try:
            add_user_roles(self.db, user_id, [role.id for role in found])
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("roles.assign.ok user_id=%s roles=%s", user_id, ",".join(sorted(found_names)))
        return AssignRolesResult(assigned=len(found), missing=missing)

    def revoke_roles(self, user_id: str, role_names: Iterable[str]) -> int:
        normalized = normalize_role_names(role_names)
        if not normalized:
            return 0

        found = get_roles_by_names(self.db, normalized)
        if not found:
            return 0

        try:
            removed = remove_user_roles(self.db, user_id, [role.id for role in found])
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("roles.revoke.ok user_id=%s removed=%s", user_id, removed)
        return removed


_SYSTEM_ROLE_DEFINITIONS: list[dict[str, str]] = [
    {"name": ROOT_ROLE, "display_name": "Root", "description": "Full access across all organizations"},
    {"name": ADMIN_ROLE, "display_name": "Administrator", "description": "Manages a single organization"},
    {"name": USER_ROLE, "display_name": "User", "description": "Regular member"},
]


def seed_system_roles(db: Session) -> int:
    """Create the built-in roles that don't exist yet; returns how many were created."""
    existing = {name for (name,) in db.query(Role.name).all()}
    created = 0
    for definition in _SYSTEM_ROLE_DEFINITIONS:
        if definition["name"] in existing:
            continue
        db.add(Role(is_system=True, is_active=True, **definition))
        created += 1
    if created:
        db.commit()
        logger.info("roles.seed.ok created=%s", created)
    return created
