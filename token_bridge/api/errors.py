"""
Exception handlers mapping the error taxonomy onto HTTP responses.

JSON endpoints get ``{"error": <code>, "error_description": <message>}``.
Handshake failures happen in a browser, so they render a short HTML page.
Stack traces, provider payloads and tokens never reach the response.
"""

from __future__ import annotations

import html
import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from token_bridge.core.errors import BridgeError, HandshakeError

logger = logging.getLogger(__name__)


def render_page(title: str, message: str, status_code: int = HTTPStatus.OK) -> HTMLResponse:
    """Minimal standalone HTML page for user-agent facing outcomes."""
    body = f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>{html.escape(title)}</title>
    <style>body {{ font-family: Arial, sans-serif; margin: 2rem; }}</style>
  </head>
  <body>
    <h1>{html.escape(title)}</h1>
    <p>{html.escape(message)}</p>
  </body>
</html>
"""
    return HTMLResponse(content=body, status_code=status_code)


def error_response(code: str, description: str | None, status_code: int) -> JSONResponse:
    content = {"error": code}
    if description:
        content["error_description"] = description
    return JSONResponse(status_code=status_code, content=content)


async def _handle_handshake_error(request: Request, exc: HandshakeError) -> HTMLResponse:
    logger.info("Handshake failed on %s: %s", request.url.path, exc.code)
    return render_page("Authorization Error", f"{exc.code}: {exc.message}", exc.status_code)


async def _handle_bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return error_response(exc.code, exc.message, exc.status_code)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    return error_response(
        "invalid_request",
        f"Invalid parameters: {', '.join(fields)}" if fields else "Invalid parameters.",
        HTTPStatus.BAD_REQUEST,
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(str(exc.detail), None, exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return error_response("server_error", "Unexpected server error.", HTTPStatus.INTERNAL_SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HandshakeError, _handle_handshake_error)
    app.add_exception_handler(BridgeError, _handle_bridge_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected)


__all__ = ["error_response", "register_exception_handlers", "render_page"]
