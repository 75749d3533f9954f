from datetime import datetime, timedelta, timezone

import jwt
import pytest
from hallbook.models import ActorRole
from hallbook.utils.auth import create_access_token, decode_access_token

SECRET = "testsecret"


def _future() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=5)


def test_round_trip_carries_user_and_role() -> None:
    token = create_access_token(user_id=42, role=ActorRole.ADMIN, secret=SECRET)
    claims = decode_access_token(token, secret=SECRET, algorithms=["HS256"])
    assert claims.user_id == 42
    assert claims.role == ActorRole.ADMIN
    assert claims.expires_at > datetime.now(timezone.utc)


def test_role_defaults_to_faculty() -> None:
    token = jwt.encode({"sub": "7", "exp": _future()}, SECRET, algorithm="HS256")
    assert decode_access_token(token, secret=SECRET, algorithms=["HS256"]).role == ActorRole.FACULTY


@pytest.mark.parametrize(
    "claims",
    [
        {"role": "faculty"},
        {"sub": "abc"},
        {"sub": "1", "role": "student"},
        {"sub": "1", "role": "system"},
    ],
)
def test_rejects_bad_claims(claims: dict[str, str]) -> None:
    token = jwt.encode({**claims, "exp": _future()}, SECRET, algorithm="HS256")
    with pytest.raises(ValueError):
        decode_access_token(token, secret=SECRET, algorithms=["HS256"])


def test_rejects_token_without_expiry() -> None:
    token = jwt.encode({"sub": "1"}, SECRET, algorithm="HS256")
    with pytest.raises(ValueError):
        decode_access_token(token, secret=SECRET, algorithms=["HS256"])


def test_rejects_expired_and_foreign_tokens() -> None:
    expired = create_access_token(user_id=1, secret=SECRET, expires_delta=timedelta(seconds=-1))
    with pytest.raises(ValueError):
        decode_access_token(expired, secret=SECRET, algorithms=["HS256"])
    foreign = create_access_token(user_id=1, secret="other-secret")
    with pytest.raises(ValueError):
        decode_access_token(foreign, secret=SECRET, algorithms=["HS256"])


def test_create_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        create_access_token(user_id=1, role="student", secret=SECRET)
