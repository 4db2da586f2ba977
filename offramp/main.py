from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, settlement
from .config import Settings, settings
from .container import OffRampServices
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware


def create_app(
    config: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = OffRampServices.build(config, transport=transport)
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(
        title="Off-ramp API",
        description="Stable-token to fiat payout orchestration backend",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(settlement.router, tags=["Settlement"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Off-ramp API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "offramp.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
