import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from gensy.api.v1.router import api_router
from gensy.config import settings
from gensy.database import engine
from gensy.providers.registry import provider_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Gensy credits API [%s]", settings.APP_ENV)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Gensy Credits API",
        description="Credit ledger and generation lifecycle",
        version="1.0.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "providers": provider_registry.list_providers(),
        }

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
