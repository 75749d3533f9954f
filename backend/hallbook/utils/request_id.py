from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_request_id_ctx: ContextVar[str | None] = ContextVar("hallbook_request_id", default=None)

_ACCEPTED = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def normalize_request_id(candidate: str | None) -> str:
    """Keep a caller-supplied id when it is short and log-safe, else mint one."""
    if candidate and _ACCEPTED.fullmatch(candidate):
        return candidate
    return generate_request_id()


@contextmanager
def bound_request_id(candidate: str | None) -> Iterator[str]:
    token = _request_id_ctx.set(normalize_request_id(candidate))
    try:
        yield _request_id_ctx.get() or ""
    finally:
        _request_id_ctx.reset(token)
