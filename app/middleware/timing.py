"""
Request timing middleware.

Records request duration and logs slow requests.
Adds X-Request-Duration-Ms and X-Request-ID headers to all responses.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Endpoints excluded from timing logs (high frequency, low value)
_SKIP_LOG = frozenset({"/api/v1/health", "/api/v1/health/live", "/api/v1/health/ready"})

# Slow request threshold (ms); spec generation is expected to exceed it
SLOW_THRESHOLD_MS = 1000


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path in _SKIP_LOG or request.path.startswith("/static"):
            return response

        if duration_ms > SLOW_THRESHOLD_MS:
            level, label = logging.WARNING, "Slow request"
        elif response.status_code >= 500:
            level, label = logging.ERROR, "Server error"
        else:
            level, label = logging.DEBUG, "Request"

        logger.log(
            level, "%s: %s %s %d (%.0fms)",
            label, request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "request_id": g.request_id,
                "workspace_id": (request.view_args or {}).get("wid"),
            },
        )
        return response
