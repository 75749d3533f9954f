from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import jwt
from jwt import InvalidTokenError

from ..models import ActorRole

DEFAULT_TOKEN_LIFETIME = timedelta(minutes=30)


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role: ActorRole
    expires_at: datetime


def create_access_token(
    *,
    user_id: int,
    role: ActorRole | str = ActorRole.FACULTY,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": ActorRole(role).value,
        "iat": issued,
        "exp": issued + (expires_delta or DEFAULT_TOKEN_LIFETIME),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def _claims_from(payload: Mapping[str, Any]) -> TokenClaims:
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
    try:
        role = ActorRole(payload.get("role", ActorRole.FACULTY.value))
    except ValueError as exc:
        raise ValueError(f"token role {payload.get('role')!r} is not recognised") from exc
    # Promotions are the engine's own; no caller may act as system.
    if role == ActorRole.SYSTEM:
        raise ValueError("token role 'system' is not accepted")
    return TokenClaims(
        user_id=user_id,
        role=role,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> TokenClaims:
    """Verify signature and expiry. Raises ValueError for any unusable token."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:
        raise ValueError("invalid token") from exc
    return _claims_from(payload)
