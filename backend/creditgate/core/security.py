from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from creditgate.core.authorization import resolve_request_roles
from creditgate.core.database import get_db
from creditgate.core.rbac import ADMIN_ROLE, ROOT_ROLE, normalize_role_names
from creditgate.core.settings import settings
from creditgate.services.roles import RoleService


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    roles: tuple[str, ...] = ()

    @property
    def is_root(self) -> bool:
        return ROOT_ROLE in self.roles


def _signing_key(token: str) -> tuple[Any, list[str]]:
    """Key and accepted algorithms: the JWKS endpoint when configured, else the shared secret."""
    if settings.jwt_jwks_url:
        jwks_client = jwt.PyJWKClient(settings.jwt_jwks_url)
        return jwks_client.get_signing_key_from_jwt(token).key, ["ES256", "RS256"]
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
    return settings.jwt_secret, [settings.jwt_algorithm]


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def decode_access_token(token: str) -> dict[str, Any]:
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    try:
        key, algorithms = _signing_key(token)
        payload = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return dict(payload)


def claimed_roles(claims: dict[str, Any]) -> list[str]:
    """Roles carried by the token: `roles`, else `app_metadata.roles`, else a single `role`."""
    roles = claims.get("roles")
    if not roles:
        app_meta = claims.get("app_metadata") or {}
        if isinstance(app_meta, dict):
            roles = app_meta.get("roles") or app_meta.get("role")
    if not roles:
        roles = claims.get("role")
    return normalize_role_names(roles)


def get_current_user(request: Request) -> CurrentUser:
    claims = decode_access_token(_get_bearer_token(request))
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    email = str(claims.get("email") or "").strip()
    return CurrentUser(id=user_id, email=email, roles=tuple(claimed_roles(claims)))


def require_roles(allowed: str | Iterable[str]):
    """Dependency factory: pass when the caller holds any of `allowed`.

    Token claims are checked first; stored role assignments are consulted only
    when the claims don't already grant access.
    """
    expected = normalize_role_names(allowed)

    def dependency(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)) -> CurrentUser:
        roles = resolve_request_roles(
            expected,
            user.roles,
            user.id,
            RoleService(db).get_user_role_names,
        )
        return CurrentUser(id=user.id, email=user.email, roles=tuple(roles))

    return dependency


require_admin = require_roles([ADMIN_ROLE, ROOT_ROLE])
require_root = require_roles(ROOT_ROLE)
