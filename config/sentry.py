# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT

FILTERED_HEADERS = ("Authorization", "authorization", "X-Admin-Secret", "x-admin-secret")


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring (no-op without SENTRY_DSN)
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),  # Pi Platform calls
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Drop KeyboardInterrupt and strip bearer tokens / admin secrets from events
    """
    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']

        if isinstance(exc_value, KeyboardInterrupt):
            return None

    if event.get('request'):
        headers = event['request'].get('headers', {})
        for name in FILTERED_HEADERS:
            if name in headers:
                headers[name] = '[Filtered]'

    return event


def set_user_context(uid: str, username: str = None):
    """
    Set Pi user context for Sentry events
    """
    sentry_sdk.set_user({
        "id": uid,
        "username": username or f"user_{uid}"
    })
