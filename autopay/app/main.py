import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from autopay.app.config import settings
from autopay.app.exceptions import register_exception_handlers
from autopay.app.logging_config import setup_logging
from autopay.app.middleware import register_middleware
from autopay.api.v1.router import api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info("Starting %s (%s)...", settings.APP_NAME, settings.ENVIRONMENT)
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        logger.warning("Razorpay credentials are not configured; provider calls will fail")
    yield
    # Shutdown
    logger.info("Shutting down...")


def create_application() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        version="1.0.0",
        lifespan=lifespan,
    )

    # Middleware
    register_middleware(application)
    application.add_middleware(GZipMiddleware, minimum_size=1000)

    register_exception_handlers(application)

    # Routers
    application.include_router(api_router, prefix="/api")

    @application.get("/health")
    async def health_check():
        return {"status": "healthy", "environment": settings.ENVIRONMENT}

    return application


app = create_application()
