"""
Request Metrics Middleware
Times every HTTP request and records it into the collector.

Routes are recorded by their full template (/api/alerts/rules/{alert_type}),
not the concrete URL, and anything that matches no route shares a single
key, so per-route counters stay bounded whatever paths clients send.
"""

import time
from typing import Callable

from fastapi import FastAPI, Request
from starlette.routing import Match

from .collector import MetricsCollector

UNMATCHED_ROUTE = "<unmatched>"


def route_template(request: Request) -> str:
    """Path template of the app route serving request, or UNMATCHED_ROUTE"""
    partial = None
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
        if match == Match.PARTIAL and partial is None:
            # path matched, method did not (405)
            partial = route.path
    return partial or UNMATCHED_ROUTE


def install_request_metrics(app: FastAPI, get_collector: Callable[[], MetricsCollector]) -> None:
    """
    Register the timing middleware on app.

    get_collector is resolved per request so the app factory can attach
    the collector to app.state after the middleware is declared.
    """

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        path = route_template(request)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - start) * 1000
            get_collector().record_api_request(path, request.method, elapsed_ms, 500)
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        get_collector().record_api_request(path, request.method, elapsed_ms, response.status_code)
        return response
