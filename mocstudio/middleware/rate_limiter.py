"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in mocstudio/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from mocstudio.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Lifecycle / task / notification endpoints: 60/minute
        - Reporting endpoints: 200/minute (read-only aggregation)
        - Health check: unlimited (app-level route, no default limits)

    Rate limiting is skipped in testing mode or when RATELIMIT_ENABLED is off.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in ("moc", "approval", "task", "notification"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("reporting")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    app.logger.info("Rate limiter configured: write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
