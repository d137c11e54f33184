"""FastAPI application for the Automation API.

One route exists::

    POST /v1/terminal/bootstrap   <- {"cwd": "/abs/path", "commands": ["..."]}
                                  -> 201 {"sessionId": "..."}

Requests pass an ordered series of gates and stop at the first failure:
auth, anti-browser headers, client identification, content type, rate
limit, body size, payload shape and finally the working-directory
allowlist. Every response, including errors produced by routing, is JSON
with ``Cache-Control: no-store`` and ``X-Content-Type-Options: nosniff``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from termbridge.automation.errors import (
    ApiError,
    ServiceShuttingDownError,
    describe_validation_error,
)
from termbridge.automation.fs_guard import assert_path_allowed
from termbridge.automation.models import BootstrapRequest

if TYPE_CHECKING:
    from termbridge.automation.service import AutomationApiService

logger = logging.getLogger(__name__)

BOOTSTRAP_PATH = "/v1/terminal/bootstrap"
CLIENT_HEADER = "X-Termbridge-Client"
MAX_CLIENT_ID_LENGTH = 128
PAYLOAD_KEYS = frozenset({"cwd", "commands"})

SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
}


class AutomationResponse(JSONResponse):
    media_type = "application/json; charset=utf-8"

    def __init__(self, content: Any, status_code: int = 200) -> None:
        super().__init__(content, status_code=status_code, headers=SECURITY_HEADERS)


def error_response(status_code: int, message: str) -> AutomationResponse:
    return AutomationResponse({"error": message}, status_code=status_code)


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

def _authenticate(request: Request, service: AutomationApiService) -> None:
    header = request.headers.get("authorization")
    if not header:
        raise ApiError("Missing bearer token", 401)
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError("Missing bearer token", 401)
    if not service.verify_token(token.strip()):
        raise ApiError("Invalid bearer token", 401)


def _reject_browser(request: Request) -> None:
    if "origin" in request.headers:
        raise ApiError("Browser-originated requests are not allowed", 403)
    if any(key.startswith("sec-fetch-") for key in request.headers.keys()):
        raise ApiError("Browser-originated requests are not allowed", 403)


def _identify_client(request: Request) -> str:
    client_id = request.headers.get(CLIENT_HEADER, "").strip()
    if not client_id:
        raise ApiError(f"{CLIENT_HEADER} header is required", 400)
    if len(client_id) > MAX_CLIENT_ID_LENGTH:
        raise ApiError(
            f"{CLIENT_HEADER} header must be at most {MAX_CLIENT_ID_LENGTH} characters", 400
        )
    return client_id


def _ensure_still_running(service: AutomationApiService) -> None:
    if service.config is None or service.executor.closed:
        raise ServiceShuttingDownError("Automation API is shutting down")


def _check_content_type(request: Request) -> None:
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != "application/json":
        raise ApiError("Content-Type must be application/json", 415)


async def _read_body(request: Request, limit: int) -> bytes:
    too_large = ApiError(f"Request body exceeds {limit} bytes", 413)
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            if int(declared) > limit:
                raise too_large
        except ValueError as e:
            raise ApiError("Invalid Content-Length header", 400) from e

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise too_large
        chunks.append(chunk)
    return b"".join(chunks)


def parse_bootstrap_payload(
    body: bytes, max_commands: int, max_command_length: int
) -> BootstrapRequest:
    """Decode and validate a bootstrap request body (400 on any problem)."""
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ApiError("Request body must be valid JSON", 400) from e
    if not isinstance(data, dict):
        raise ApiError("Request body must be a JSON object", 400)
    unknown = sorted(set(data) - PAYLOAD_KEYS)
    if unknown:
        raise ApiError(f"unknown key '{unknown[0]}'", 400)
    try:
        return BootstrapRequest.model_validate(
            data,
            context={
                "max_commands": max_commands,
                "max_command_length": max_command_length,
            },
        )
    except ValidationError as e:
        raise ApiError(describe_validation_error(e), 400) from e


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(service: AutomationApiService) -> FastAPI:
    """Create the Automation API application bound to ``service``.

    The service supplies the live token, config, rate limiter and bootstrap
    executor; the app holds no state of its own.
    """
    app = FastAPI(
        title="termbridge Automation API",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )
    app.state.service = service

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> AutomationResponse:
        logger.info(
            "Rejected %s %s: %d %s",
            request.method, request.url.path, exc.status_code, exc.message,
        )
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> AutomationResponse:
        messages = {404: "Not found", 405: "Method not allowed"}
        message = messages.get(exc.status_code, str(exc.detail))
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> AutomationResponse:
        logger.exception("Unhandled error in automation request")
        return error_response(500, "Internal server error")

    @app.post(BOOTSTRAP_PATH, status_code=201)
    async def bootstrap(request: Request) -> AutomationResponse:
        svc: AutomationApiService = app.state.service
        _authenticate(request, svc)
        _reject_browser(request)
        client_id = _identify_client(request)
        _check_content_type(request)

        config = svc.config
        if config is None:
            raise ApiError("Automation API is not running", 503)
        if not svc.rate_limiter.try_acquire():
            raise ApiError("Rate limit exceeded", 429)

        body = await _read_body(request, config.max_request_bytes)
        _ensure_still_running(svc)
        payload = parse_bootstrap_payload(
            body, config.max_commands, config.max_command_length
        )

        loop = asyncio.get_running_loop()
        canonical_cwd = await loop.run_in_executor(
            None, assert_path_allowed, payload.cwd, config.allowed_roots
        )
        _ensure_still_running(svc)
        validated = payload.model_copy(update={"cwd": canonical_cwd})

        logger.info(
            "Bootstrap requested by %s in %s (%d command(s))",
            client_id, canonical_cwd, len(validated.commands),
        )
        result = await svc.executor.execute(validated, config.request_timeout_ms)
        return AutomationResponse({"sessionId": result.session_id}, status_code=201)

    return app
