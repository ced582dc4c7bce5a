"""Sentry error tracking configuration."""

import logging
import os
from typing import Optional, Dict, Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration

logger = structlog.get_logger(__name__)

SERVICE_NAME = "patent-legal-status"

SENSITIVE_HEADERS = ["authorization", "cookie", "x-api-key", "x-auth-token"]
SENSITIVE_KEYS = ["password", "token", "secret", "key", "recipient"]


def setup_sentry(
    dsn: Optional[str] = None,
    environment: str = "development",
    service_name: str = SERVICE_NAME,
    service_version: str = "1.0.0",
    traces_sample_rate: float = 0.1,
) -> bool:
    """Setup Sentry error tracking. Returns whether tracking is enabled."""
    try:
        if not dsn:
            dsn = os.getenv("SENTRY_DSN")

        if not dsn:
            logger.warning("Sentry DSN not provided, error tracking disabled")
            return False

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=f"{service_name}@{service_version}",
            traces_sample_rate=traces_sample_rate,
            integrations=[
                AsyncioIntegration(),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR
                ),
                RedisIntegration(),
            ],
            before_send=filter_sensitive_data,
            debug=environment == "development"
        )

        logger.info("Sentry error tracking initialized",
                    environment=environment,
                    service_name=service_name)
        return True

    except Exception as e:
        logger.error("Failed to setup Sentry", error=str(e))
        return False


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Filter sensitive data from Sentry events."""
    try:
        if "request" in event and "headers" in event["request"]:
            for header in SENSITIVE_HEADERS:
                if header in event["request"]["headers"]:
                    event["request"]["headers"][header] = "[REDACTED]"

        # Subscription recipients are personal contact details
        for section in ("extra", "tags"):
            if section in event:
                for key in SENSITIVE_KEYS:
                    if key in event[section]:
                        event[section][key] = "[REDACTED]"

        return event

    except Exception as e:
        logger.error("Error filtering sensitive data", error=str(e))
        return event


def capture_exception(error: Exception, context: Optional[Dict[str, Any]] = None):
    """Capture an exception with additional context."""
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("service", SERVICE_NAME)
            for key, value in (context or {}).items():
                scope.set_tag(key, value)
            sentry_sdk.capture_exception(error)

        logger.debug("Exception captured in Sentry",
                     error_type=type(error).__name__,
                     error_message=str(error))

    except Exception as e:
        logger.error("Failed to capture exception in Sentry", error=str(e))
