"""
OAuth API routes — connection initiation and provider callbacks, plus
SSO sign-in initiation.

Route prefix: /api/auth
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import get_services
from config.settings import config
from connectors.errors import ConfigurationError, InvalidStateError, SourceNotFoundError
from connectors.sso import get_sso_provider
from connectors.state import decode_state, encode_state
from core.services import Services
from database.models import SourceStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

_CONFIG_ERROR = {"error": "Server configuration error."}
_SUCCESS_STATUSES = (SourceStatus.CONNECTED.value, SourceStatus.SYNCING.value)


def _app_url(request: Request) -> str:
    return (config.app_url or str(request.base_url)).rstrip("/")


def _login_redirect(request: Request, error: str) -> RedirectResponse:
    return RedirectResponse(f"{_app_url(request)}/login?{urlencode({'error': error})}")


def _kb_redirect(request: Request, tenant_id: str, **params: str) -> RedirectResponse:
    return RedirectResponse(f"{_app_url(request)}/{tenant_id}/knowledge-base?{urlencode(params)}")


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(services: Services = Depends(get_services)) -> list[dict]:
    """
    List all connector providers and their configuration status.
    Used by the frontend to show available connectors.
    """
    return services.registry.list_providers()


@router.get("/sso/{provider}/initiate")
async def sso_initiate(provider: str, tenant_id: Optional[str] = Query(default=None, alias="tenantId")):
    """Redirect to an identity provider's sign-in page (state carries the tenant only)."""
    if not tenant_id:
        return JSONResponse({"error": "tenantId is required"}, status_code=400)
    sso = get_sso_provider(provider)
    if sso is None:
        return JSONResponse({"error": f"Unknown SSO provider '{provider}'"}, status_code=404)
    if not sso.is_configured():
        logger.error("%s SSO environment variables are not set", sso.display_name)
        return JSONResponse(_CONFIG_ERROR, status_code=500)
    return RedirectResponse(sso.get_auth_url(encode_state(tenant_id)))


@router.get("/{provider}/initiate")
async def oauth_initiate(
    provider: str,
    tenant_id: Optional[str] = Query(default=None, alias="tenantId"),
    services: Services = Depends(get_services),
):
    """
    Create a ``Pending`` data source and redirect to the provider's
    consent screen.
    """
    if not tenant_id:
        return JSONResponse({"error": "tenantId is required"}, status_code=400)
    try:
        initiation = await services.state_machine.initiate(tenant_id, provider)
    except LookupError:
        return JSONResponse({"error": f"Unknown provider '{provider}'"}, status_code=404)
    except ConfigurationError as exc:
        logger.error("OAuth initiate for %s failed: %s", provider, exc)
        return JSONResponse(_CONFIG_ERROR, status_code=500)
    return RedirectResponse(initiation.redirect_url)


@router.get("/{provider}/callback")
async def oauth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
):
    """
    Provider redirects here after consent.

    Exchanges the code for tokens through the connection state machine and
    sends the browser back to the tenant's knowledge base page.
    """
    if not state or (not code and not error):
        return _login_redirect(request, "oauth_failed")
    try:
        decoded = decode_state(state)
    except InvalidStateError as exc:
        logger.warning("Invalid OAuth state on %s callback: %s", provider, exc)
        return _login_redirect(request, "invalid_state")

    connector = services.registry.get(provider)
    if connector is None:
        return JSONResponse({"error": f"Unknown provider '{provider}'"}, status_code=404)
    source_type = connector.source_type

    if not decoded.source_id:
        return _kb_redirect(request, decoded.tenant_id, connect_error=f"{source_type}_missing_state")

    try:
        outcome = await services.state_machine.complete_callback(
            provider, state, code=code, error=error, error_description=error_description
        )
    except InvalidStateError as exc:
        logger.warning("Rejected %s callback: %s", provider, exc)
        return _kb_redirect(request, decoded.tenant_id, connect_error=f"{source_type}_invalid_state")
    except SourceNotFoundError as exc:
        logger.warning("Rejected %s callback: %s", provider, exc)
        return _kb_redirect(request, decoded.tenant_id, connect_error=f"{source_type}_missing_state")

    if outcome.connected or (outcome.duplicate and outcome.status in _SUCCESS_STATUSES):
        return _kb_redirect(request, decoded.tenant_id, connect_success=source_type)
    return _kb_redirect(request, decoded.tenant_id, connect_error=source_type)
