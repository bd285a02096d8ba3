"""Product configuration routes."""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import require_admin
from app.database.catalog_store import catalog_store
from app.models.order import check_custom_text
from app.models.product import CatalogEntry, CatalogType, ProductConfig
from app.models.request import TextValidationRequest, TextValidationResponse
from app.models.user import AdminPrincipal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/devices", response_model=list[CatalogEntry])
async def list_devices() -> list[CatalogEntry]:
    return await catalog_store.active_entries(CatalogType.DEVICES)


@router.get("/colors", response_model=list[CatalogEntry])
async def list_colors() -> list[CatalogEntry]:
    return await catalog_store.active_entries(CatalogType.COLORS)


@router.get("/fonts", response_model=list[CatalogEntry])
async def list_fonts() -> list[CatalogEntry]:
    return await catalog_store.active_entries(CatalogType.FONTS)


@router.get("/carriers", response_model=list[CatalogEntry])
async def list_carriers() -> list[CatalogEntry]:
    return await catalog_store.active_entries(CatalogType.CARRIERS)


@router.get("/case-types", response_model=list[CatalogEntry])
async def list_case_types() -> list[CatalogEntry]:
    return await catalog_store.active_entries(CatalogType.CASE_TYPES)


@router.post("/validate-text", response_model=TextValidationResponse)
async def validate_text(request: TextValidationRequest) -> TextValidationResponse:
    """Check custom text before it is added to the cart."""
    valid, message, clean = check_custom_text(request.text)
    return TextValidationResponse(valid=valid, message=message, cleanText=clean)


@router.put("/config/{catalog_type}", response_model=ProductConfig)
async def update_catalog(
    catalog_type: CatalogType,
    entries: list[CatalogEntry],
    principal: AdminPrincipal = Depends(require_admin),
) -> ProductConfig:
    """Replace one catalog section."""
    config = await catalog_store.replace_entries(catalog_type, entries)
    logger.info("Catalog %s replaced by %s", catalog_type.value, principal.email)
    return config
