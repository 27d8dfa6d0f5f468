from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from tablegate.schemas.actions import ApiRequest, ApiResponse
from tablegate.services.pipeline import Pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API"])


async def _read_body(request: Request) -> Any:
    """Parse a JSON or form body; unreadable bodies are passed on as None."""
    if request.method in ("GET", "OPTIONS"):
        return None

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.info("api.invalid_json_body", extra={"content_type": content_type})
        return None


async def to_api_request(request: Request) -> ApiRequest:
    return ApiRequest(
        method=request.method.upper(),
        query=dict(request.query_params),
        headers={name.lower(): value for name, value in request.headers.items()},
        body=await _read_body(request),
        client_host=request.client.host if request.client else None,
    )


def to_http_response(result: ApiResponse) -> Response:
    if result.status_code == 204 or result.payload is None:
        return Response(status_code=result.status_code, headers=result.headers)
    return JSONResponse(status_code=result.status_code, content=result.payload, headers=result.headers)


@router.api_route("/api", methods=["GET", "POST", "DELETE", "OPTIONS"])
async def api_endpoint(request: Request) -> Response:
    """Single entry point: ``/api?action=<action>&table=<table>``.

    The request is converted to a transport-neutral ``ApiRequest`` and run
    through the pipeline in the thread pool (storage and data access block).
    """
    pipeline: Pipeline = request.app.state.pipeline
    api_request = await to_api_request(request)
    result = await run_in_threadpool(pipeline.handle, api_request)
    return to_http_response(result)
