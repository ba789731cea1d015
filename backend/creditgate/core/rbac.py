from __future__ import annotations

from typing import Iterable

ROOT_ROLE = "root"
ADMIN_ROLE = "admin"
USER_ROLE = "user"

ORGANIZATION_TYPE_MANAGEMENT = "management"
ORGANIZATION_TYPE_SCHOOL = "school"

ORGANIZATION_TYPES: tuple[str, ...] = (ORGANIZATION_TYPE_MANAGEMENT, ORGANIZATION_TYPE_SCHOOL)


def normalize_role_name(value: object) -> str:
    return str(value or "").strip().lower()


def normalize_role_names(roles: Iterable[object] | None) -> list[str]:
    """Trim and lowercase role names, dropping blanks and duplicates (first occurrence wins)."""
    if not roles:
        return []
    if isinstance(roles, str):
        roles = [roles]
    out: list[str] = []
    seen: set[str] = set()
    for role in roles:
        name = normalize_role_name(role)
        if not name or name in seen:
            continue
        seen.add(name)
        out.append(name)
    return out
