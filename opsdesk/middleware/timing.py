"""
Request id + timing middleware.

Each request gets an id (the caller's ``X-Request-ID`` when it is sane,
otherwise a fresh one) that the logging filter stamps on every record.
Responses carry ``X-Request-ID`` and ``X-Request-Duration-Ms``; the access
line is logged at a level chosen by outcome and latency.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes hit these every few seconds
QUIET_PATHS = frozenset({"/api/health", "/api/health/live", "/api/health/ready"})

SLOW_REQUEST_MS = 1000

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id() -> str:
    incoming = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(incoming):
        return incoming
    return uuid.uuid4().hex[:12]


def _level_for(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    if status >= 400:
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _finish_request(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path not in QUIET_PATHS:
            logger.log(
                _level_for(response.status_code, elapsed),
                "%s %s -> %d in %.0fms%s",
                request.method, request.path, response.status_code, elapsed,
                " (slow)" if elapsed > SLOW_REQUEST_MS else "",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed,
                    "remote_addr": request.remote_addr,
                },
            )
        return response
