"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from openfinance_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from openfinance_gateway.api.v1 import connections, quota
from openfinance_gateway.infrastructure.observability.logging import setup_logging
from openfinance_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Open Finance Gateway",
        description="Bank connection, synchronization and daily quota service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(connections.router, prefix="/v1", tags=["connections"])
    app.include_router(quota.router, prefix="/v1", tags=["quota"])

    return app


app = create_app()
