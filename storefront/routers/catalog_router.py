from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import catalog, schemas
from ..auth import get_current_admin
from ..cache import CacheService
from ..database import get_db
from ..dependencies import get_cache, to_http_exception
from ..errors import StorefrontError

router = APIRouter(tags=["Catalog"])


# -----------------------------
# Public reads
# -----------------------------


@router.get("/categories", response_model=List[schemas.CategoryOut])
def list_categories(db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
    return catalog.list_categories(db, cache)


@router.get("/categories/{category_id:int}", response_model=schemas.CategoryDetailOut)
def get_category(category_id: int, db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
    try:
        return catalog.get_category(db, category_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/products", response_model=List[schemas.ProductOut])
def list_products(
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    return catalog.list_products(db, cache, category_id=category_id, search=search, skip=skip, limit=limit)


@router.get("/products/{product_id:int}", response_model=schemas.ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
    try:
        return catalog.get_product(db, product_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/products/{product_id:int}/bulk-price", response_model=schemas.BulkPriceQuote)
def bulk_price(product_id: int, quantity: int = Query(..., gt=0), db: Session = Depends(get_db)):
    try:
        return catalog.quote_bulk_price(db, product_id, quantity)
    except StorefrontError as e:
        raise to_http_exception(e)


# -----------------------------
# Admin: categories
# -----------------------------


@router.post("/admin/categories", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.CategoryCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.create_category(db, payload.model_dump(), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/admin/categories/{category_id:int}", response_model=schemas.CategoryOut)
def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.update_category(db, category_id, payload.model_dump(exclude_unset=True), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.delete("/admin/categories/{category_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        catalog.delete_category(db, category_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


# -----------------------------
# Admin: products
# -----------------------------


@router.post("/admin/products", response_model=schemas.ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: schemas.ProductCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.create_product(db, payload.model_dump(), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/admin/products/{product_id:int}", response_model=schemas.ProductOut)
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.update_product(db, product_id, payload.model_dump(exclude_unset=True), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.delete("/admin/products/{product_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        catalog.delete_product(db, product_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/admin/products/{product_id:int}/availability", response_model=schemas.ProductOut)
def set_availability(
    product_id: int,
    payload: schemas.AvailabilityUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.set_product_availability(db, product_id, payload.is_available, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/admin/products/{product_id:int}/stock", response_model=schemas.ProductOut)
def update_stock(
    product_id: int,
    payload: schemas.StockUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.update_stock(
            db,
            product_id,
            stock_quantity=payload.stock_quantity,
            low_stock_threshold=payload.low_stock_threshold,
            cache=cache,
        )
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/admin/products/low-stock", response_model=List[schemas.ProductOut])
def low_stock(current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    return catalog.low_stock_products(db)


# -----------------------------
# Admin: variants and bulk pricing
# -----------------------------


@router.post(
    "/admin/products/{product_id:int}/variants",
    response_model=schemas.VariantOut,
    status_code=status.HTTP_201_CREATED,
)
def create_variant(
    product_id: int,
    payload: schemas.VariantCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.create_variant(db, product_id, payload.model_dump(), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/admin/variants/{variant_id:int}", response_model=schemas.VariantOut)
def update_variant(
    variant_id: int,
    payload: schemas.VariantUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.update_variant(db, variant_id, payload.model_dump(exclude_unset=True), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.delete("/admin/variants/{variant_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_variant(
    variant_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        catalog.delete_variant(db, variant_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/admin/products/{product_id:int}/bulk-pricing", response_model=List[schemas.BulkPricingTierOut])
def list_bulk_pricing(
    product_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        return catalog.list_bulk_pricing_tiers(db, product_id)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.post(
    "/admin/products/{product_id:int}/bulk-pricing",
    response_model=schemas.BulkPricingTierOut,
    status_code=status.HTTP_201_CREATED,
)
def create_bulk_pricing(
    product_id: int,
    payload: schemas.BulkPricingTierCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        return catalog.create_bulk_pricing_tier(db, product_id, payload.model_dump(), cache)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.delete("/admin/bulk-pricing/{tier_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bulk_pricing(
    tier_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        catalog.delete_bulk_pricing_tier(db, tier_id, cache)
    except StorefrontError as e:
        raise to_http_exception(e)
