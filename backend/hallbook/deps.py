from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status

from .config import Settings
from .database import get_sessionmaker
from .domain.events import EventSink
from .domain.repositories import UnitOfWork
from .domain.services import BookingPolicy
from .domain.state_machine import Actor
from .infrastructure.repositories import SqlAlchemyUnitOfWork
from .utils.auth import decode_access_token


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_policy(request: Request) -> BookingPolicy:
    return request.app.state.policy


def get_event_sink(request: Request) -> EventSink:
    return request.app.state.events


async def get_uow(request: Request) -> AsyncIterator[UnitOfWork]:
    store = getattr(request.app.state, "memory_store", None)
    if store is not None:
        yield store.unit_of_work()
        return
    async with get_sessionmaker()() as session:
        yield SqlAlchemyUnitOfWork(session)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> Actor:
    if authorization is None:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")
    try:
        claims = decode_access_token(
            token.strip(),
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except ValueError as exc:
        raise _unauthorized("invalid or expired token") from exc
    return Actor(id=claims.user_id, role=claims.role)
