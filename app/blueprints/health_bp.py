"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, LLM provider, jobs)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.ai.gateway import MODEL_FAMILIES, LLMGateway
from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── LLM provider (configuration only, no network call) ───────────
    model = current_app.config.get("LLM_DEFAULT_CHAT_MODEL", "")
    provider = LLMGateway.provider_for(model)
    known = any(model.startswith(prefix) for prefix, _ in MODEL_FAMILIES)
    checks["llm"] = {
        "status": "configured" if known else "unknown_model",
        "model": model,
        "provider": provider,
    }

    # ── Scheduler ────────────────────────────────────────────────────
    scheduler = current_app.extensions.get("scheduler")
    checks["scheduler"] = {
        "status": "ok" if scheduler else "not_initialized",
        "jobs": [j["job_name"] for j in scheduler.list_jobs()] if scheduler else [],
    }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "AI Company Workflow Engine",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
