"""
Client Error API Router

Receives error reports from the browser bundle. ``appName``, ``stack`` and
``rawUrl`` may arrive in the JSON/form body, the query string or the path;
the body wins over the query, the query over the path.
"""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import parse_qsl

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from relaylog.errors import ClientPayloadError
from relaylog.logging import Logger

from .handler import ClientErrorHandler, ClientErrorReport

router = APIRouter(prefix="/client-errors", tags=["client-errors"])


def get_client_error_handler(request: Request) -> ClientErrorHandler:
    handler = getattr(request.app.state, "client_error_handler", None)
    if handler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Client error handler not ready")
    return handler


def get_request_logger(request: Request) -> Logger | None:
    return getattr(request.state, "log", None)


async def _read_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    content_type = request.headers.get("content-type") or ""
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(raw.decode("utf-8", errors="replace")))
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")
    return payload


def _request_summary(request: Request) -> Dict[str, Any]:
    return {
        "method": request.method,
        "url": str(request.url),
        "userAgent": request.headers.get("user-agent", ""),
        "remoteAddress": request.client.host if request.client else None,
    }


@router.api_route("", methods=["GET", "POST"])
@router.api_route("/{appName}", methods=["GET", "POST"])
async def report_client_error(
    request: Request,
    handler: ClientErrorHandler = Depends(get_client_error_handler),
    request_logger: Logger | None = Depends(get_request_logger),
) -> Response:
    body = await _read_body(request)
    try:
        report = ClientErrorReport.from_sources(
            body,
            dict(request.query_params),
            dict(request.path_params),
            request=_request_summary(request),
        )
    except ClientPayloadError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    ack = handler.handle(report, request_logger)
    if isinstance(ack.body, str):
        return PlainTextResponse(ack.body, status_code=ack.status_code)
    return JSONResponse(ack.body, status_code=ack.status_code)
