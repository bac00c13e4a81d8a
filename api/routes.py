"""
REST API routes — tenant data sources, on-demand and scheduled sync.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from api.dependencies import cron_authorized, get_services
from connectors.errors import (
    ConfigurationError,
    SourceNotEligibleError,
    SourceNotFoundError,
)
from core.services import Services
from database import helpers
from database.models import SYNC_ELIGIBLE_STATUSES
from utils.schemas import ApiKeySourceRequest, RenameRequest, WebsiteSourceRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SourceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, SourceNotEligibleError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error: %s", exc)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error.")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


# ── Data sources ───────────────────────────────────────────────────────


@router.get("/tenants/{tenant_id}/sources")
async def list_sources(tenant_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    async with services.session_factory() as session:
        sources = await helpers.list_data_sources(session, tenant_id)
    return {"sources": [s.to_dict() for s in sources]}


@router.get("/tenants/{tenant_id}/sources/{source_id}")
async def get_source(tenant_id: str, source_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    async with services.session_factory() as session:
        try:
            source = await helpers.require_data_source(session, tenant_id, source_id)
        except SourceNotFoundError as exc:
            raise _http_error(exc)
        return source.to_dict()


@router.post("/tenants/{tenant_id}/sources/website", status_code=status.HTTP_201_CREATED)
async def create_website_source(
    tenant_id: str,
    request: WebsiteSourceRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Register a public website; it is queued for a first crawl right away."""
    return await services.state_machine.connect_website(
        tenant_id,
        str(request.url),
        request.options.model_dump(by_alias=True),
        name=request.name,
    )


@router.post("/tenants/{tenant_id}/sources/api-key", status_code=status.HTTP_201_CREATED)
async def create_api_key_source(
    tenant_id: str,
    request: ApiKeySourceRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Connect a token-based source (GitHub, Notion, Confluence, …)."""
    secret: Dict[str, Any] = {"api_key": request.api_key}
    if request.email:
        secret["email"] = request.email
    try:
        return await services.state_machine.connect_with_api_key(
            tenant_id, request.type, request.name, secret, request.config
        )
    except (ValueError, ConfigurationError) as exc:
        raise _http_error(exc)


@router.patch("/tenants/{tenant_id}/sources/{source_id}")
async def rename_source(
    tenant_id: str,
    source_id: str,
    request: RenameRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        return await services.state_machine.rename(tenant_id, source_id, request.name)
    except (SourceNotFoundError, ValueError) as exc:
        raise _http_error(exc)


@router.post("/tenants/{tenant_id}/sources/{source_id}/disable")
async def disable_source(tenant_id: str, source_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        return await services.state_machine.disable(tenant_id, source_id)
    except (SourceNotFoundError, SourceNotEligibleError) as exc:
        raise _http_error(exc)


@router.post("/tenants/{tenant_id}/sources/{source_id}/enable")
async def enable_source(tenant_id: str, source_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        return await services.state_machine.enable(tenant_id, source_id)
    except (SourceNotFoundError, SourceNotEligibleError, ConfigurationError) as exc:
        raise _http_error(exc)


@router.delete("/tenants/{tenant_id}/sources/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(tenant_id: str, source_id: str, services: Services = Depends(get_services)) -> Response:
    """Disconnect: tombstone the source and delete its credential and chunks."""
    try:
        removed = await services.state_machine.disconnect(tenant_id, source_id)
    except ConfigurationError as exc:
        raise _http_error(exc)
    if not removed:
        raise _http_error(SourceNotFoundError(tenant_id, source_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/tenants/{tenant_id}/sources/{source_id}/sync", status_code=status.HTTP_202_ACCEPTED)
async def sync_source(tenant_id: str, source_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Queue one source for an immediate sync; 409 when it is not eligible."""
    async with services.session_factory() as session:
        try:
            source = await helpers.require_data_source(session, tenant_id, source_id)
        except SourceNotFoundError as exc:
            raise _http_error(exc)
        current_status = source.status
    if current_status not in SYNC_ELIGIBLE_STATUSES:
        raise _http_error(SourceNotEligibleError(source_id, current_status))
    if not services.orchestrator.submit(tenant_id, source_id):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync queue is full")
    return {"queued": True, "sourceId": source_id}


@router.get("/tenants/{tenant_id}/sources/{source_id}/chunks")
async def list_source_chunks(
    tenant_id: str,
    source_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    async with services.session_factory() as session:
        try:
            source = await helpers.require_data_source(session, tenant_id, source_id)
        except SourceNotFoundError as exc:
            raise _http_error(exc)
        chunks = await helpers.list_chunks(session, tenant_id, source_id, offset=offset, limit=limit)
        return {
            "sourceId": source_id,
            "total": source.item_count or 0,
            "chunks": [c.to_dict() for c in chunks],
        }


# ── Sync scheduling ────────────────────────────────────────────────────


@router.get("/cron/sync-all")
async def cron_sync_all(
    authorized: bool = Depends(cron_authorized),
    services: Services = Depends(get_services),
):
    """
    Trigger a sync of every eligible source across all tenants.

    Called by an external scheduler with ``Authorization: Bearer <CRON_SECRET>``.
    Returns immediately; per-source results show up on each source's status.
    """
    if not authorized:
        return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)
    services.orchestrator.dispatch_sync_all()
    return JSONResponse({"success": True, "message": "Sync process started for all applicable sources."})


@router.get("/sync/stats")
async def sync_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.orchestrator.stats()
