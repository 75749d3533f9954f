import pytest
from fastapi import FastAPI
from hallbook.main import request_id_middleware
from hallbook.utils.request_id import (
    bound_request_id,
    generate_request_id,
    get_request_id,
    normalize_request_id,
    set_request_id,
)
from httpx import ASGITransport, AsyncClient


def test_context_holds_one_id_at_a_time() -> None:
    minted = generate_request_id()
    set_request_id(minted)
    try:
        assert get_request_id() == minted
    finally:
        set_request_id(None)
    assert get_request_id() is None


def test_normalize_keeps_safe_ids_and_replaces_others() -> None:
    assert normalize_request_id("trace:7.a_b") == "trace:7.a_b"
    for unsafe in ("bad id\nwith newline", "x" * 200, None, ""):
        replaced = normalize_request_id(unsafe)
        assert replaced != unsafe
        assert len(replaced) == 32


def test_bound_request_id_restores_previous_value() -> None:
    set_request_id("outer")
    with bound_request_id("inner") as rid:
        assert rid == get_request_id() == "inner"
    assert get_request_id() == "outer"
    set_request_id(None)


def _echo_app() -> FastAPI:
    app = FastAPI()
    app.middleware("http")(request_id_middleware)

    @app.get("/echo")
    async def echo() -> dict[str, str]:
        return {"seen": get_request_id() or ""}

    return app


@pytest.mark.asyncio
@pytest.mark.parametrize("incoming", [None, "booking-42", "spaces are rejected"])
async def test_middleware_binds_id_and_echoes_header(incoming: str | None) -> None:
    headers = {"X-Request-ID": incoming} if incoming else {}
    async with AsyncClient(transport=ASGITransport(app=_echo_app()), base_url="http://test") as client:
        resp = await client.get("/echo", headers=headers)

    echoed = resp.headers["X-Request-ID"]
    assert resp.json()["seen"] == echoed
    if incoming == "booking-42":
        assert echoed == incoming
    else:
        assert len(echoed) == 32
