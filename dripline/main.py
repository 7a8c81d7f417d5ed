"""
Dripline - stage-triggered drip campaigns for field-service CRMs

FastAPI application entry point.
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# Import observability modules
from dripline.config import settings
from dripline.errors import CatalogValidationError, NotFoundError
from dripline.logging_config import configure_logging
from dripline.sentry_config import configure_sentry
from dripline.middleware.logging import LoggingMiddleware
from dripline.routes.metrics import router as metrics_router

# Import route modules
from dripline.routes.sequences import router as sequences_router
from dripline.routes.events import router as events_router
from dripline.routes.jobs import router as jobs_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Schedules and delivers stage-triggered email/SMS drip campaigns for CRM deals",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(CatalogValidationError)
async def validation_error_handler(request: Request, exc: CatalogValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.message},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message},
    )


# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include authoring routes
app.include_router(sequences_router)

# Include event intake
app.include_router(events_router)

# Include operator job routes
app.include_router(jobs_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected"
    }
