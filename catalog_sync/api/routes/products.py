"""Product import and maintenance API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from catalog_sync.api.deps import get_sync_service, require_admin_api_key
from catalog_sync.ingest.supplier_client import NoProductDataError, SupplierFetchError
from catalog_sync.normalize.processor import NormalizationError
from catalog_sync.worker.service import InvalidIdentifierError, ProductNotFoundError, SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


class ProductResponse(BaseModel):
    """Response model for product."""
    id: int
    user_id: str
    internal_sku: str
    supplier_asin: str
    supplier_url: Optional[str]
    title: str
    brand: Optional[str]
    category: Optional[str]
    features: List[str]
    image_urls: List[str]
    supplier_price: float
    original_price: Optional[float]
    our_price: float
    currency: str
    stock_status: str
    stock_quantity: Optional[int]
    rating_average: Optional[float]
    rating_count: int
    scrape_errors: int
    is_active: bool
    last_scraped: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ImportRequest(BaseModel):
    """ASIN or Amazon product URL to import."""
    identifier: str
    user_id: str
    country: Optional[str] = None


class ImportResponse(BaseModel):
    created: bool
    product: ProductResponse


class RefreshResponse(BaseModel):
    ok: bool
    error: Optional[str]
    deactivated: bool
    changed_fields: List[str]
    product: Optional[ProductResponse]


class DeactivateRequest(BaseModel):
    user_id: str
    product_ids: Optional[List[int]] = None


class DeactivateResponse(BaseModel):
    deactivated: int


@router.get("", response_model=List[ProductResponse])
async def list_products(
    user_id: str,
    active: Optional[bool] = None,
    limit: int = 100,
    service: SyncService = Depends(get_sync_service),
):
    """List a user's products, most recently updated first."""
    products = await service.list_products(user_id, active=active, limit=limit)
    return [ProductResponse.model_validate(p) for p in products]


@router.post(
    "/import",
    response_model=ImportResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def import_product(
    request: ImportRequest,
    service: SyncService = Depends(get_sync_service),
):
    """Import one product by ASIN or URL (refreshes it if already stored)."""
    try:
        result = await service.import_single(request.identifier, request.user_id, request.country)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (NoProductDataError, SupplierFetchError, NormalizationError) as e:
        logger.warning(f"Import of {request.identifier} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return ImportResponse(
        created=result.created,
        product=ProductResponse.model_validate(result.product),
    )


@router.post(
    "/deactivate",
    response_model=DeactivateResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def deactivate_products(
    request: DeactivateRequest,
    service: SyncService = Depends(get_sync_service),
):
    """Soft-delete products (all of the user's products if no ids are given)."""
    count = await service.deactivate_products(request.user_id, request.product_ids)
    return DeactivateResponse(deactivated=count)


@router.post(
    "/{product_id}/refresh",
    response_model=RefreshResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def refresh_product(
    product_id: int,
    country: Optional[str] = None,
    service: SyncService = Depends(get_sync_service),
):
    """Refresh one product outside any sync session."""
    try:
        result = await service.refresh_product(product_id, country)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return RefreshResponse(
        ok=result.ok,
        error=result.error,
        deactivated=result.deactivated,
        changed_fields=list(result.changed_fields),
        product=ProductResponse.model_validate(result.product) if result.product else None,
    )
