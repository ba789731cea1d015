from __future__ import annotations

from typing import Callable, Iterable

from fastapi import HTTPException

from creditgate.core.errors import create_permission_error
from creditgate.core.rbac import normalize_role_names


RoleLoader = Callable[[str], Iterable[str]]


def has_required_role(roles: Iterable[str] | None, expected: str | Iterable[str]) -> bool:
    held = set(normalize_role_names(roles))
    return any(role in held for role in normalize_role_names(expected))


def assert_has_role(
    roles: Iterable[str] | None,
    expected: str | Iterable[str],
    error: Exception | None = None,
) -> None:
    if has_required_role(roles, expected):
        return
    if error is not None:
        raise error
    raise create_permission_error()


def resolve_request_roles(
    expected: str | Iterable[str],
    claimed_roles: Iterable[str] | None,
    user_id: str | None,
    load_user_roles: RoleLoader | None,
) -> list[str]:
    """Decide whether a request may proceed and return its effective role set.

    Claimed roles satisfy the check without touching storage. Otherwise the
    user's stored roles are merged in; a request with no user id is refused
    before any lookup.
    """
    required = normalize_role_names(expected)
    working = normalize_role_names(claimed_roles)
    held = set(working)

    if any(role in held for role in required):
        return working

    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if load_user_roles is None:
        raise create_permission_error()

    for name in normalize_role_names(load_user_roles(user_id)):
        if name not in held:
            held.add(name)
            working.append(name)

    if not any(role in held for role in required):
        raise create_permission_error()
    return working
