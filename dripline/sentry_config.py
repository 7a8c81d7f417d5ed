"""
Sentry configuration for error tracking.

Captures unhandled exceptions from the API and the dispatch worker.
"""
import sentry_sdk
import structlog
from sentry_sdk.integrations.arq import ArqIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from dripline.config import settings

logger = structlog.get_logger()


def configure_sentry():
    """
    Initialize Sentry with FastAPI, SQLAlchemy and ARQ integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            ArqIntegration(),
        ],
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)
