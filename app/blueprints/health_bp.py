"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, LLM providers, rate-limit storage)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.ai.gateway import LLMGateway
from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


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

    # ── LLM providers (configured keys only, no network call) ────────
    gateway = LLMGateway(default_model=current_app.config.get("LLM_DEFAULT_CHAT_MODEL"))
    checks["llm"] = {
        "status": "ok",
        "default_model": gateway.default_model,
        "providers": gateway.available_providers,
    }

    # ── Rate-limit storage ───────────────────────────────────────────
    storage_url = current_app.config.get("RATELIMIT_STORAGE_URI", "")
    if storage_url.startswith(("redis://", "rediss://")):
        try:
            import redis as redis_lib
            t0 = time.perf_counter()
            redis_lib.from_url(storage_url, socket_timeout=2).ping()
            checks["ratelimit_storage"] = {
                "status": "ok",
                "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
            }
        except ImportError:
            checks["ratelimit_storage"] = {"status": "skipped", "detail": "redis package not installed"}
        except Exception as exc:
            # limits fall back per request; not fatal for liveness
            checks["ratelimit_storage"] = {"status": "error", "detail": str(exc)}
    else:
        checks["ratelimit_storage"] = {"status": "skipped", "detail": "in-memory storage"}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "ABAP Documentation Workbench",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
