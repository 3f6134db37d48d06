"""
Rate limiting configuration.

Applies per-blueprint and per-endpoint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

GENERATION_LIMIT = "10/minute"
WORKSPACE_LIMIT = "300/minute"

# Endpoints that call the LLM gateway
GENERATION_ENDPOINTS = (
    "workspace.generate_technical_spec",
    "workspace.generate_functional_spec",
)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Spec generation:  10/minute  (LLM calls are expensive)
        - Workspace API:    300/minute (uploads, tree toggles, reads)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    # Generation endpoints: strict limit (LLM calls)
    for endpoint in GENERATION_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view:
            app.view_functions[endpoint] = limiter.limit(GENERATION_LIMIT)(view)

    bp = app.blueprints.get("workspace")
    if bp:
        limiter.limit(WORKSPACE_LIMIT)(bp)

    # Health check is exempt
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — generation: %s, workspace: %s",
        GENERATION_LIMIT, WORKSPACE_LIMIT,
    )
