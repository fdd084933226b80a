"""
API routes for the recordsync HTTP surface.

The presentation layer drives the sync core through these endpoints:
trigger or run a pass, read records, hand over share references and
toggle the global sync preference.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..remote.base import ShareMetadata
from ..service import SyncService
from ..share.pending import ShareReference
from ..store.records import RecordLocationStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recordsync"])


# --- Request/Response Models ---


class ShareReferenceRequest(BaseModel):
    """An inbound share, as a URL or as resolved metadata."""

    url: Optional[str] = Field(None, description="Share URL to resolve")
    metadata: Optional[dict[str, Any]] = Field(None, description="Pre-resolved share metadata")


class PreferenceRequest(BaseModel):
    """Request to set the global sync preference."""

    enabled: bool = Field(..., description="Sync even when no record is cloud-enabled")


class PreferenceResponse(BaseModel):
    """Global sync preference."""

    enabled: bool


class TriggerResponse(BaseModel):
    """Response of a fire-and-forget sync trigger."""

    accepted: bool
    syncing: bool


class RecordListResponse(BaseModel):
    """Local records in display order."""

    items: list[dict[str, Any]]
    total: int


class DeliverResponse(BaseModel):
    """Outcome of a share delivery."""

    parked: bool
    result: Optional[dict[str, Any]] = None


class ConsumeResponse(BaseModel):
    """Reference taken from the pending-share box, if any."""

    reference: Optional[dict[str, Any]] = None


# --- Dependencies ---


def get_service(request: Request) -> SyncService:
    """Get the sync service from app state."""
    return request.app.state.service


def _to_reference(body: ShareReferenceRequest) -> ShareReference:
    if (body.url is None) == (body.metadata is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of url or metadata")
    if body.url is not None:
        return ShareReference.from_url(body.url)
    try:
        return ShareReference.from_metadata(ShareMetadata.from_dict(body.metadata))
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid share metadata: {e}")


# --- Sync Routes ---


@router.post("/sync", response_model=TriggerResponse, status_code=202)
async def trigger_sync(service: SyncService = Depends(get_service)):
    """
    Start a sync pass in the background.

    Returns immediately. Calling this while a pass is running does not
    start a second one.
    """
    service.orchestrator.trigger_sync()
    return TriggerResponse(accepted=True, syncing=service.orchestrator.is_syncing)


@router.post("/sync/run")
async def run_sync(service: SyncService = Depends(get_service)):
    """
    Run a sync pass and wait for its report.

    Joins the running pass if there is one.
    """
    report = await service.orchestrator.trigger_sync()
    return report.to_dict()


@router.get("/sync/status")
async def sync_status(service: SyncService = Depends(get_service)):
    """Current sync state, cursors and the last pass report."""
    return await service.status()


# --- Record Routes ---


@router.get("/records", response_model=RecordListResponse)
async def list_records(
    status: Optional[RecordLocationStatus] = Query(None, description="Filter by location"),
    service: SyncService = Depends(get_service),
):
    """
    List local records, humans first, then pets.

    Each record carries its location status (local, cloud or shared).
    """
    records = await service.store.list_records()
    if status is not None:
        records = [r for r in records if r.location_status == status]

    items = []
    for record in records:
        item = record.to_dict()
        item["location_status"] = record.location_status.value
        item["display_name"] = record.display_name
        items.append(item)
    return RecordListResponse(items=items, total=len(items))


# --- Share Routes ---


@router.post("/shares/accept")
async def accept_share(body: ShareReferenceRequest, service: SyncService = Depends(get_service)):
    """
    Accept a share and import its records.

    Returns 422 with the failure details if the share was rejected.
    """
    result = await service.shares.accept(_to_reference(body))
    return JSONResponse(status_code=200 if result.success else 422, content=result.to_dict())


@router.post("/shares/deliver", response_model=DeliverResponse)
async def deliver_share(body: ShareReferenceRequest, service: SyncService = Depends(get_service)):
    """
    Hand over a share from a platform delivery hook.

    Parked in the pending box while the surface is not ready.
    """
    result = await service.shares.deliver(_to_reference(body))
    if result is None:
        return DeliverResponse(parked=True)
    return DeliverResponse(parked=False, result=result.to_dict())


@router.post("/shares/pending/consume", response_model=ConsumeResponse)
async def consume_pending_share(service: SyncService = Depends(get_service)):
    """Take the parked share reference, if any. A second call returns nothing."""
    reference = service.pending.consume()
    return ConsumeResponse(reference=reference.to_dict() if reference else None)


# --- Preference Routes ---


@router.get("/preferences/sync-when-no-cloud-records", response_model=PreferenceResponse)
async def get_sync_preference(service: SyncService = Depends(get_service)):
    """Whether passes run when no record is cloud-enabled."""
    return PreferenceResponse(enabled=await service.get_sync_when_no_cloud_records())


@router.put("/preferences/sync-when-no-cloud-records", response_model=PreferenceResponse)
async def set_sync_preference(
    body: PreferenceRequest, service: SyncService = Depends(get_service)
):
    """Toggle whether passes run when no record is cloud-enabled."""
    await service.set_sync_when_no_cloud_records(body.enabled)
    return PreferenceResponse(enabled=body.enabled)
