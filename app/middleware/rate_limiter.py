"""
Rate limiting configuration.

Applies per-route-category rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per blueprint and per LLM-backed view.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Views that call the LLM gateway synchronously
LLM_ENDPOINTS = (
    "workflow.generate_deliverable",
    "workflow.review_deliverable",
    "workflow.compile_phase_report",
)

LLM_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - LLM endpoints:    10/minute  (generation, review, report compile)
        - Workflow / teams: 60/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint in LLM_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit(LLM_LIMIT)(view)

    for bp_name in ("workflow", "teams"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — LLM: %s, workflow: %s", LLM_LIMIT, WRITE_LIMIT
    )
