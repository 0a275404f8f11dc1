"""
Orders Microservice
Order lifecycle and payment status tracking for the storefront
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional
import os

from alembic import command
from alembic.config import Config

from storefront_orders.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront_orders.core_settings import Settings, get_settings
from storefront_orders.context import OrdersContext
from storefront_orders.api.routes import router as orders_router
from storefront_orders.domain.errors import OrderError
from storefront_orders.infrastructure.db import init_models

# Service configuration
SERVICE_NAME = "orders-service"
SERVICE_DESCRIPTION = "Order lifecycle and payment status microservice"
MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "migrations")

setup_logging(
    service_name=SERVICE_NAME,
    level=os.getenv("LOG_LEVEL", "INFO")
)

logger = get_logger(__name__)

HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    503: "service_unavailable",
}

def run_migrations(database_url: str) -> None:
    config = Config()
    config.set_main_option("script_location", MIGRATIONS_DIR)
    config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    command.upgrade(config, "head")

def create_app(context: Optional[OrdersContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    When no context is given one is built from settings during startup and
    closed on shutdown; a supplied context is left for the caller to close.
    """
    settings = settings or (context.settings if context is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {SERVICE_NAME} version {settings.SERVICE_VERSION}")
        owns_context = app.state.context is None
        if owns_context:
            if settings.RUN_MIGRATIONS:
                logger.info("Running database migrations")
                try:
                    run_migrations(settings.database_url)
                    logger.info("Database migrations completed")
                except Exception as e:
                    logger.error(f"Migration error: {e}")
            app.state.context = OrdersContext.from_settings(settings)
            try:
                init_models(app.state.context.engine)
                logger.info("Database models initialized")
            except Exception as e:
                logger.error(f"Failed to initialize database models: {e}")
                raise

        logger.info(f"{SERVICE_NAME} started successfully")
        yield

        logger.info(f"Shutting down {SERVICE_NAME}")
        if owns_context:
            app.state.context.close()
            app.state.context = None

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"{exc.code}: {exc.message}",
            extra={"extra_fields": {"path": request.url.path, "status_code": exc.status_code}},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Same body shape as domain errors
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTP_ERROR_CODES.get(exc.status_code, "http_error"), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "detail": detail, "details": {"errors": jsonable_encoder(errors)}},
        )

    health_service = ServiceHealth(SERVICE_NAME, settings.SERVICE_VERSION, redis_url=settings.REDIS_URL)
    app.include_router(health_service.create_health_router())
    app.include_router(orders_router)

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "docs": "/api/docs"
        }

    @app.get("/info")
    async def info():
        return {
            "service": SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "description": SERVICE_DESCRIPTION,
            "environment": os.getenv("ENVIRONMENT", "development"),
            "endpoints": {
                "orders": "/orders",
                "health": "/health",
                "ready": "/health/ready",
                "live": "/health/live",
                "metrics": "/metrics",
                "docs": "/api/docs"
            }
        }

    return app

app = create_app()
