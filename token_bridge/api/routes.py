"""
FastAPI routes for the provider token bridge.
"""

from __future__ import annotations

import logging
import re
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from token_bridge.api.errors import render_page
from token_bridge.clients.provider_api import MAX_ITEMS_PER_PAGE
from token_bridge.core.errors import (
    CredentialError,
    ProviderError,
    ProviderUnavailableError,
    RequestValidationFailed,
)
from token_bridge.dependencies import (
    get_backend_token_issuer,
    get_credential_store,
    get_oauth_bridge_service,
    get_provider_api_client,
    get_provider_token_service,
)
from token_bridge.middleware.rate_limit import rate_limit_dependency
from token_bridge.models.oauth import AuthFlow, BackendTokenClaims
from token_bridge.schemas import OAuthErrorResponse, OAuthTokenResponse, RevokeResponse
from token_bridge.services.backend_tokens import ACCESS_TOKEN_TYPE, InvalidBackendToken

router = APIRouter()
logger = logging.getLogger(__name__)

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)
_FIELDS = re.compile(r"^[A-Za-z0-9_]+(,[A-Za-z0-9_]+)*$")

auth_rate_limit = Depends(rate_limit_dependency("auth"))
api_rate_limit = Depends(rate_limit_dependency("api"))


async def require_backend_claims(
    request: Request,
    issuer: Annotated[Any, Depends(get_backend_token_issuer)],
) -> BackendTokenClaims:
    """Verify the caller's backend access token and return its claims."""
    match = _BEARER.match(request.headers.get("authorization", ""))
    if not match:
        raise CredentialError("missing_access_token", "Bearer access token required.")
    try:
        return issuer.verify(match.group(1).strip(), ACCESS_TOKEN_TYPE)
    except InvalidBackendToken as exc:
        raise CredentialError("invalid_access_token", "Access token is invalid or expired.") from exc


def _parse_fields(fields: Optional[str]) -> Optional[list[str]]:
    if fields is None:
        return None
    cleaned = fields.replace(" ", "")
    if not _FIELDS.match(cleaned):
        raise RequestValidationFailed(message="fields must be a comma-separated list of field names.")
    return cleaned.split(",")


def _relay(status_code: int, payload: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/provider/start", dependencies=[auth_rate_limit])
async def start_provider_oauth_flow(
    bridge: Annotated[Any, Depends(get_oauth_bridge_service)],
) -> RedirectResponse:
    """Direct reconnection: send the browser to the provider consent screen."""
    authorization_url = bridge.start(AuthFlow.DIRECT)
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)


@router.get("/auth/provider/callback", dependencies=[auth_rate_limit])
async def handle_provider_oauth_callback(
    bridge: Annotated[Any, Depends(get_oauth_bridge_service)],
    code: Optional[str] = Query(default=None, description="Authorization code from the provider."),
    state: Optional[str] = Query(default=None, description="State issued when the flow started."),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
) -> Response:
    """Complete Hop A and either return to the downstream client or show a success page."""
    result = await bridge.complete_callback(
        code=code, state=state, error=error, error_description=error_description
    )
    if result.redirect_url:
        return RedirectResponse(url=result.redirect_url, status_code=HTTPStatus.FOUND)
    return render_page("Success!", "Your account is connected. You can close this window.")


@router.get("/oauth/authorize", dependencies=[auth_rate_limit])
async def authorize_downstream_client(
    bridge: Annotated[Any, Depends(get_oauth_bridge_service)],
    client_id: Optional[str] = Query(default=None),
    redirect_uri: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    response_type: Optional[str] = Query(default=None),
) -> RedirectResponse:
    """Hop B entry point: validate the client, then start Hop A in bridge mode."""
    authorization_url = bridge.authorize(
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        response_type=response_type,
    )
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)


@router.post(
    "/oauth/token",
    response_model=OAuthTokenResponse,
    responses={400: {"model": OAuthErrorResponse}, 401: {"model": OAuthErrorResponse}},
    dependencies=[auth_rate_limit],
)
async def exchange_token(
    bridge: Annotated[Any, Depends(get_oauth_bridge_service)],
    grant_type: Optional[str] = Form(default=None),
    code: Optional[str] = Form(default=None),
    refresh_token: Optional[str] = Form(default=None),
    client_id: Optional[str] = Form(default=None),
    client_secret: Optional[str] = Form(default=None),
) -> dict:
    """Hop B grant exchange for ``authorization_code`` and ``refresh_token``."""
    return bridge.exchange_token(
        grant_type=grant_type,
        code=code,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
    )


@router.get("/api/provider/user", dependencies=[api_rate_limit])
async def get_provider_user(
    claims: Annotated[BackendTokenClaims, Depends(require_backend_claims)],
    token_service: Annotated[Any, Depends(get_provider_token_service)],
    api_client: Annotated[Any, Depends(get_provider_api_client)],
    fields: Optional[str] = Query(default=None, description="Comma-separated field names."),
) -> JSONResponse:
    """Relay the provider's user profile for the caller's subject."""
    field_list = _parse_fields(fields)
    access_token = await token_service.resolve_access_token(claims.subject)
    try:
        status_code, payload = await api_client.get_user(access_token, fields=field_list)
    except ProviderError as exc:
        raise ProviderUnavailableError(message="Provider API unavailable.") from exc
    return _relay(status_code, payload)


@router.get("/api/provider/items", dependencies=[api_rate_limit])
async def list_provider_items(
    claims: Annotated[BackendTokenClaims, Depends(require_backend_claims)],
    token_service: Annotated[Any, Depends(get_provider_token_service)],
    api_client: Annotated[Any, Depends(get_provider_api_client)],
    fields: Optional[str] = Query(default=None, description="Comma-separated field names."),
    max_count: int = Query(default=MAX_ITEMS_PER_PAGE, ge=1),
    cursor: Optional[int] = Query(default=None, ge=0),
) -> JSONResponse:
    """Relay one page of the caller's provider items."""
    field_list = _parse_fields(fields)
    access_token = await token_service.resolve_access_token(claims.subject)
    try:
        status_code, payload = await api_client.list_items(
            access_token, fields=field_list, max_count=min(max_count, MAX_ITEMS_PER_PAGE), cursor=cursor
        )
    except ProviderError as exc:
        raise ProviderUnavailableError(message="Provider API unavailable.") from exc
    return _relay(status_code, payload)


@router.post("/api/connector/revoke", response_model=RevokeResponse, dependencies=[api_rate_limit])
async def revoke_connector(
    claims: Annotated[BackendTokenClaims, Depends(require_backend_claims)],
    credential_store: Annotated[Any, Depends(get_credential_store)],
) -> JSONResponse:
    """Forget the provider credential bound to the caller's subject."""
    revoked = await credential_store.revoke(claims.subject)
    status_code = HTTPStatus.OK if revoked else HTTPStatus.NOT_FOUND
    return JSONResponse(status_code=status_code, content={"revoked": revoked})
