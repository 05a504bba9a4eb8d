from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cifan.api.admin import router as admin_router
from cifan.api.routes import files_router
from cifan.api.routes import router as api_router
from cifan.config import get_settings
from cifan.db.init import init_database
from cifan.logging_config import configure_logging
from cifan.web.routes import router as web_router


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        init_database()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    app.include_router(admin_router)
    app.include_router(files_router)
    if settings.web_ui_enabled:
        app.include_router(web_router)
    return app
