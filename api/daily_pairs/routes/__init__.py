from fastapi import FastAPI

from .admin import router as admin_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(admin_router, tags=["admin"])


__all__ = ["include_modular_routers"]
