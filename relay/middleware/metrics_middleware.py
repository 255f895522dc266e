"""
HTTP metrics middleware for Prometheus
Tracks request count, latency, and error rates
"""
import time
from typing import Callable
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from relay.utils.metrics import record_http_request


def normalize_endpoint(path: str) -> str:
    """Collapse per-tenant paths so tenant ids don't become metric labels"""
    if path.startswith("/api/connections/") and len(path.split("/")) > 3:
        return "/api/connections/{tenant_id}"
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP metrics for Prometheus
    Tracks request count, duration, and error rates
    """
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics collection for metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)
        
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        
        record_http_request(request.method, normalize_endpoint(request.url.path), response.status_code, duration)
        
        return response
