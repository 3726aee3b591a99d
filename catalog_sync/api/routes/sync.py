"""Bulk sync session API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from catalog_sync.api.deps import get_sync_service, require_admin_api_key
from catalog_sync.db.models import StockStatus, SyncSession
from catalog_sync.worker.service import SessionNotFoundError, SyncOptions, SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


class StartSyncRequest(BaseModel):
    """Request model for starting a bulk sync."""
    user_id: str
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    country: Optional[str] = None
    stock_status: Optional[StockStatus] = None


class StartSyncResponse(BaseModel):
    session_id: Optional[int]
    total_products: int
    started: bool
    message: str


class SyncSessionResponse(BaseModel):
    """Response model for a sync session snapshot."""
    id: int
    user_id: str
    status: str
    cancel_requested: bool
    total_products: int
    processed_products: int
    updated_products: int
    failed_products: int
    progress_percent: float
    started_at: datetime
    completed_at: Optional[datetime]
    error_message: Optional[str]

    class Config:
        from_attributes = True


class SyncLogResponse(BaseModel):
    id: int
    session_id: int
    product_id: Optional[int]
    action: str
    message: str
    created_at: datetime

    class Config:
        from_attributes = True


def _session_response(session: SyncSession) -> SyncSessionResponse:
    return SyncSessionResponse.model_validate(session)


@router.post(
    "/start",
    response_model=StartSyncResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def start_sync(
    request: StartSyncRequest,
    service: SyncService = Depends(get_sync_service),
):
    """Start a bulk refresh; progress is polled through /status."""
    result = await service.start_bulk_sync(
        request.user_id,
        request.limit,
        SyncOptions(country=request.country, stock_status=request.stock_status),
    )
    return StartSyncResponse(
        session_id=result.session_id,
        total_products=result.total_products,
        started=result.started,
        message=result.message,
    )


@router.post(
    "/{session_id}/cancel",
    response_model=SyncSessionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def cancel_sync(session_id: int, service: SyncService = Depends(get_sync_service)):
    """Request cancellation at the next batch boundary."""
    try:
        session = await service.cancel_sync(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _session_response(session)


@router.get("/status", response_model=SyncSessionResponse)
async def get_sync_status(
    session_id: Optional[int] = None,
    user_id: Optional[str] = None,
    service: SyncService = Depends(get_sync_service),
):
    """Snapshot of one session, or of a user's latest session."""
    if session_id is None and user_id is None:
        raise HTTPException(status_code=400, detail="session_id or user_id is required")
    try:
        session = await service.get_sync_status(session_id=session_id, user_id=user_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _session_response(session)


@router.get("/{session_id}/logs", response_model=List[SyncLogResponse])
async def list_sync_logs(
    session_id: int,
    limit: int = 200,
    service: SyncService = Depends(get_sync_service),
):
    """Audit trail of a session, newest first."""
    try:
        entries = await service.list_logs(session_id, limit)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [SyncLogResponse.model_validate(entry) for entry in entries]
