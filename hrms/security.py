from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hrms.errors import ApiError
from hrms.models import Role
from hrms.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    employee_id: int
    role: Role


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc
    return payload


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    try:
        employee_id = int(str(claims.get("sub")))
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc
    try:
        role = Role(claims.get("role"))
    except ValueError as exc:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Unknown role.") from exc
    return Actor(employee_id=employee_id, role=role)


def require_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    actor = actor_from_claims(decode_token(credentials.credentials))
    request.state.actor = actor.role.value
    request.state.actor_id = str(actor.employee_id)
    return actor


def require_role(*roles: Role) -> Callable[..., Actor]:
    allowed = frozenset(roles)

    def _dependency(actor: Actor = Depends(require_actor)) -> Actor:
        if actor.role not in allowed:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return actor

    return _dependency
