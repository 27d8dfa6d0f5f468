"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id:
- Accepts the incoming request id header or generates a UUID
- Stores it in contextvars so pipeline logs and error bodies can read it
- Echoes it on the response together with the total request duration
- Clears the context afterwards to prevent leaks across requests

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from tablegate.core.logging import clear_request_id, set_request_id

DEFAULT_REQUEST_ID_HEADER = "X-Request-ID"


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id and duration header to every response.

    The header name comes from ``app.state.request_id_header`` (``LOG_REQUEST_ID_HEADER``),
    falling back to ``X-Request-ID``.

    Example:
        >>> # Request arrives with {"X-Request-ID": "req-abc-123"}
        >>> # Response carries {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "4.12"}
    """

    header_name = getattr(request.app.state, "request_id_header", DEFAULT_REQUEST_ID_HEADER)
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
