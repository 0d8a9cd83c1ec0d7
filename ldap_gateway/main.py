from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError

from .ad import ADClient
from .env_settings import get_env
from .errors import GatewayError, InvalidJsonError
from .log_config import setup_logging
from .routers.groups import router as groups_router
from .routers.objects import router as objects_router
from .routers.users import router as users_router
from .services import ad_cfg_from_env, build_ad_client
from .webui import json_with_trace_id

log = logging.getLogger(__name__)


def create_app(ad_client: ADClient | None = None) -> FastAPI:
    """Build the API. ``ad_client`` is injected by tests; otherwise it is
    created from the environment on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ad_client is None:
            env = get_env()
            setup_logging(env.log_level, env.log_dir, env.log_retention_days)
            app.state.ad_client = build_ad_client(ad_cfg_from_env(env))
        else:
            app.state.ad_client = ad_client
        yield
        log.info("Остановка сервиса, закрытие LDAP соединений...")
        app.state.ad_client.pool.close()

    app = FastAPI(title="LDAP Gateway", lifespan=lifespan)
    if ad_client is not None:
        app.state.ad_client = ad_client

    @app.middleware("http")
    async def trace_and_log(request: Request, call_next):
        # trace_id из заголовка или сгенерированный
        request.state.trace_id = request.headers.get("trace_id") or f"req_{uuid.uuid4()}"
        client_ip = request.client.host if request.client else "?"
        log.info(
            "Получен HTTP запрос: %s %s ip=%s trace_id=%s",
            request.method, request.url.path, client_ip, request.state.trace_id,
        )
        started = time.monotonic()
        response = await call_next(request)
        log.info(
            "HTTP запрос обработан: status=%d duration=%.3fs trace_id=%s",
            response.status_code, time.monotonic() - started, request.state.trace_id,
        )
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        log.warning("%s: %s", getattr(request.state, "opt", request.url.path), exc)
        return json_with_trace_id(request, exc.http_status, exc.code, exc.message, None)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        err = InvalidJsonError()
        log.info("Некорректное тело запроса %s: %s", request.url.path, exc.errors())
        return json_with_trace_id(request, err.http_status, err.code, err.message, None)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.exception("Необработанная ошибка: %s %s", request.method, request.url.path)
        return json_with_trace_id(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, GatewayError.code, "Internal Server Error", {},
        )

    app.include_router(objects_router)
    app.include_router(users_router)
    app.include_router(groups_router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    env = get_env()
    setup_logging(env.log_level, env.log_dir, env.log_retention_days)
    uvicorn.run("ldap_gateway.main:app", host=env.listen, port=env.port, log_config=None)
