import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .config import Settings, get_settings
from .database import create_schema
from .infrastructure.events import AuditLogEventSink, FanOutEventSink
from .infrastructure.memory import InMemoryStore
from .routers import halls, reservations
from .utils.request_id import bound_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    with bound_request_id(request.headers.get(REQUEST_ID_HEADER)) as request_id:
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def health() -> dict[str, str]:
    return {"status": "ok"}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.storage_backend == "sql":
            await create_schema()
        logger.info(
            "hall booking started: backend=%s mode=%s periods=%d",
            settings.storage_backend,
            settings.booking_mode.value,
            app.state.policy.calendar.period_count(),
        )
        yield

    app = FastAPI(title="Seminar Hall Booking API", lifespan=lifespan)
    app.state.settings = settings
    app.state.policy = settings.policy()
    app.state.events = FanOutEventSink([AuditLogEventSink()])
    if settings.storage_backend == "memory":
        app.state.memory_store = InMemoryStore()

    app.middleware("http")(request_id_middleware)
    app.get("/health")(health)
    app.include_router(halls.router)
    app.include_router(reservations.router)
    return app


app = create_app()
