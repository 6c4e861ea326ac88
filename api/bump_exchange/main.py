import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import CORS_ORIGINS, LOG_LEVEL, STORE_CONNECT_ATTEMPTS
from .deps import ExchangeServices, build_exchange_store, build_services
from .routes import include_modular_routers
from .services.errors import ExchangeError, RateLimited, StoreUnavailable
from .store.base import ExchangeStore

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    429: "RATE_LIMITED",
}


def wait_for_store(store: ExchangeStore, max_attempts: int = STORE_CONNECT_ATTEMPTS, delay_seconds: float = 1.0) -> None:
    last_err: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            store.connect()
            store.ping()
            return
        except StoreUnavailable as exc:
            last_err = exc
            logger.warning("[store] not reachable (attempt %s/%s): %s", attempt, max_attempts, exc)
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


def _error_body(message: str, code: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message, "code": code}
    if extra:
        body.update(extra)
    return body


def create_app(services: ExchangeServices | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.exchange = services
            yield
            return
        store = build_exchange_store()
        wait_for_store(store)
        app.state.exchange = build_services(store)
        try:
            yield
        finally:
            store.close()

    app = FastAPI(title="Bump Exchange API", lifespan=lifespan)
    if services is not None:
        app.state.exchange = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    include_modular_routers(app)

    @app.exception_handler(ExchangeError)
    async def exchange_error_handler(request: Request, exc: ExchangeError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[exchange] %s %s failed: %s", request.method, request.url.path, exc.message)
        headers = {"Retry-After": str(exc.retry_after_seconds)} if isinstance(exc, RateLimited) else None
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.code), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        extra: dict[str, Any] = {}
        if isinstance(exc.detail, dict):
            extra = {k: v for k, v in exc.detail.items() if k != "message"}
            message = str(exc.detail.get("message") or "error")
        else:
            message = str(exc.detail)
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(message, code, extra),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = str(errors[0].get("msg")) if errors else "Invalid request"
        return JSONResponse(status_code=400, content=_error_body(message, "VALIDATION_ERROR"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[exchange] unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=_error_body("Internal server error", "INTERNAL_ERROR"))

    @app.get("/health")
    def health(request: Request) -> JSONResponse:
        exchange: ExchangeServices | None = getattr(request.app.state, "exchange", None)
        try:
            if exchange is None:
                raise StoreUnavailable("Exchange store is not initialised")
            exchange.store.ping()
        except StoreUnavailable as exc:
            return JSONResponse(status_code=503, content={"status": "degraded", "store": exc.message})
        return JSONResponse(content={"status": "ok", "store": "ok"})

    return app


app = create_app()
