"""Sentry integration for error tracking and performance monitoring.

Sentry is initialized early in main() after logging setup, and only when
SENTRY_DSN is present in the environment.
"""

import os

import sentry_sdk

from pg_fanout.__about__ import __version__


def setup_sentry(environment: str = "local") -> bool:
    """Initialize Sentry if a DSN is configured. Returns True when enabled."""
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=0.03,
        environment=os.environ.get("SENTRY_ENVIRONMENT", environment),
        release=__version__,
        attach_stacktrace=True,
        send_default_pii=False,
    )
    return True
