from fastapi import APIRouter, FastAPI

from .exchange import router as exchange_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(exchange_router, tags=["exchange"])


__all__ = ["include_modular_routers", "APIRouter"]
