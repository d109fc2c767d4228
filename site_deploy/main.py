import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from site_deploy.config import settings
from site_deploy.db.base import engine
from site_deploy.routers import deployments, routing
from site_deploy.services.artifact_store import ArtifactStoreConfigurationError, ArtifactStoreError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Site Deploy API", default_response_class=ORJSONResponse)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ArtifactStoreConfigurationError)
    async def artifact_store_configuration_error(request: Request, exc: ArtifactStoreConfigurationError):
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"error": "artifact_store_not_configured", "message": str(exc)}},
        )

    @app.exception_handler(ArtifactStoreError)
    async def artifact_store_error(request: Request, exc: ArtifactStoreError):
        logger.error("artifact_store.request_failed", extra={"path": request.url.path, "error": str(exc)})
        return ORJSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": {"error": "artifact_store_error", "message": str(exc)}},
        )

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(deployments.router)
    app.include_router(routing.router)

    return app


app = create_app()
