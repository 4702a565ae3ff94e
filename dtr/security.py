from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from dtr.errors import ApiError
from dtr.models import ActorRole, AuditActorType
from dtr.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

OFFICE_ROLES = frozenset({ActorRole.OFFICE, ActorRole.HR})


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: ActorRole
    name: str | None = None
    profile_name: str | None = None

    @property
    def is_office(self) -> bool:
        return self.role in OFFICE_ROLES

    @property
    def audit_type(self) -> AuditActorType:
        return AuditActorType.OFFICE if self.is_office else AuditActorType.OWNER

    @property
    def display_name(self) -> str:
        return self.name or self.profile_name or self.user_id


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise ApiError(status_code=500, code="AUTH_NOT_CONFIGURED", message="JWT secret is not configured.")
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

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    try:
        role = ActorRole(str(claims.get("role") or ""))
    except ValueError as exc:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.") from exc
    return Actor(
        user_id=str(claims["sub"]),
        role=role,
        name=claims.get("name") or None,
        profile_name=claims.get("profile_name") or None,
    )


def require_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    actor = actor_from_claims(decode_token(credentials.credentials))

    request.state.actor = actor.role.value
    request.state.actor_id = actor.user_id
    return actor


def require_office(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_office:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Office access required.")
    return actor
