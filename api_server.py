from __future__ import annotations  # FastAPI server exposing templates and evaluation sessions

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config.settings import settings
from storage.migrate import migrate

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the API application and make sure the database schema exists."""

    migrate(settings.DB_PATH)
    app = FastAPI(title="Call Coaching Evaluation API")
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    logger.info("API ready with database at %s", settings.DB_PATH)
    return app


app = create_app()

