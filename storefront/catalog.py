"""Catalog reads and admin mutations.

Public reads are served through the cache as plain JSON-ready dicts and never
show soft-deleted rows. Every mutation commits, then invalidates the cache
namespaces it affects before returning.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import cache as cache_keys
from .cache import CacheService, safe_invalidate
from .cart import CENTS
from .errors import (
    CategoryInUseError,
    CategoryNotFoundError,
    DuplicateNameError,
    InvalidDiscountError,
    NotFoundError,
    ProductNotFoundError,
    VariantNotFoundError,
)
from .log import get_logger
from .models import BulkPricingTier, Category, Product, ProductVariant
from .schemas import BulkPricingTierOut, CategoryOut, ProductOut, VariantOut

logger = get_logger(__name__)


def _invalidate(cache: Optional[CacheService], *actions: str) -> None:
    if cache is None:
        return
    for action in actions:
        safe_invalidate(getattr(cache, action))


def _product_view(product: Product) -> Dict[str, Any]:
    view = ProductOut.model_validate(product)
    view.variants = [VariantOut.model_validate(v) for v in product.variants if not v.is_deleted]
    return view.model_dump(mode="json")


def _active_products(db: Session):
    return (
        db.query(Product)
        .options(selectinload(Product.variants), selectinload(Product.bulk_pricing_tiers))
        .populate_existing()
        .filter(Product.is_deleted.is_(False), Product.is_available.is_(True))
    )


# -----------------------------
# Categories
# -----------------------------


def list_categories(db: Session, cache: Optional[CacheService] = None) -> List[Dict[str, Any]]:
    def fetch():
        rows = db.query(Category).filter(Category.is_deleted.is_(False)).order_by(Category.name).all()
        return [CategoryOut.model_validate(c).model_dump(mode="json") for c in rows]

    if cache is None:
        return fetch()
    return cache.get_or_set(cache_keys.ALL_CATEGORIES, fetch, cache_keys.CATEGORIES_TTL)


def get_category(db: Session, category_id: int, cache: Optional[CacheService] = None) -> Dict[str, Any]:
    def fetch():
        category = (
            db.query(Category)
            .filter(Category.id == category_id, Category.is_deleted.is_(False))
            .first()
        )
        if category is None:
            raise CategoryNotFoundError("Category not found", category_id=category_id)
        products = _active_products(db).filter(Product.category_id == category_id).order_by(Product.name).all()
        view = CategoryOut.model_validate(category).model_dump(mode="json")
        view["products"] = [_product_view(p) for p in products]
        return view

    if cache is None:
        return fetch()
    return cache.get_or_set(cache_keys.category_key(category_id), fetch, cache_keys.CATEGORIES_TTL)


def _category_or_404(db: Session, category_id: int) -> Category:
    category = db.query(Category).filter(Category.id == category_id, Category.is_deleted.is_(False)).first()
    if category is None:
        raise CategoryNotFoundError("Category not found", category_id=category_id)
    return category


def _check_category_name(db: Session, name: str, exclude_id: Optional[int] = None) -> str:
    name = (name or "").strip()
    q = db.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise DuplicateNameError("Category with this name already exists", name=name)
    return name


def create_category(db: Session, data: Dict[str, Any], cache: Optional[CacheService] = None) -> Category:
    name = _check_category_name(db, data.get("name"))
    category = Category(name=name, description=data.get("description"))
    db.add(category)
    db.commit()
    db.refresh(category)
    _invalidate(cache, "invalidate_categories")
    logger.info("category_created", category_id=category.id, name=name)
    return category


def update_category(db: Session, category_id: int, data: Dict[str, Any], cache: Optional[CacheService] = None) -> Category:
    category = _category_or_404(db, category_id)
    if data.get("name") is not None:
        category.name = _check_category_name(db, data["name"], exclude_id=category_id)
    if data.get("description") is not None:
        category.description = data["description"]
    db.commit()
    db.refresh(category)
    _invalidate(cache, "invalidate_categories")
    return category


def delete_category(db: Session, category_id: int, cache: Optional[CacheService] = None) -> None:
    """Soft delete. Refused while the category still has live products."""
    category = _category_or_404(db, category_id)
    active = (
        db.query(func.count(Product.id))
        .filter(Product.category_id == category_id, Product.is_deleted.is_(False))
        .scalar()
    )
    if active:
        raise CategoryInUseError(
            f"Cannot delete category. It has {active} active products. Please move or delete them first.",
            category_id=category_id,
            products=int(active),
        )
    category.is_deleted = True
    db.commit()
    _invalidate(cache, "invalidate_categories")
    logger.info("category_deleted", category_id=category_id)


# -----------------------------
# Products
# -----------------------------


def list_products(
    db: Session,
    cache: Optional[CacheService] = None,
    *,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """Orderable products. Unfiltered and per-category lists are cached whole and paged after."""
    if search:
        pattern = f"%{search}%"
        q = _active_products(db).filter(
            or_(Product.name.ilike(pattern), Product.description.ilike(pattern), Product.sku.ilike(pattern))
        )
        if category_id is not None:
            q = q.filter(Product.category_id == category_id)
        return [_product_view(p) for p in q.order_by(Product.name).offset(skip).limit(limit).all()]

    def fetch():
        q = _active_products(db)
        if category_id is not None:
            q = q.filter(Product.category_id == category_id)
        return [_product_view(p) for p in q.order_by(Product.name).all()]

    if cache is None:
        rows = fetch()
    else:
        key = (
            cache_keys.products_by_category_key(category_id)
            if category_id is not None
            else cache_keys.ALL_PRODUCTS
        )
        rows = cache.get_or_set(key, fetch, cache_keys.PRODUCTS_TTL)
    return rows[skip : skip + limit]


def get_product(db: Session, product_id: int, cache: Optional[CacheService] = None) -> Dict[str, Any]:
    def fetch():
        product = (
            db.query(Product)
            .options(selectinload(Product.variants), selectinload(Product.bulk_pricing_tiers))
            .populate_existing()
            .filter(Product.id == product_id, Product.is_deleted.is_(False))
            .first()
        )
        if product is None:
            raise ProductNotFoundError("Product not found", product_id=product_id)
        return _product_view(product)

    if cache is None:
        return fetch()
    return cache.get_or_set(cache_keys.product_key(product_id), fetch, cache_keys.PRODUCT_DETAIL_TTL)


def _product_or_404(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id, Product.is_deleted.is_(False)).first()
    if product is None:
        raise ProductNotFoundError("Product not found", product_id=product_id)
    return product


def _commit_unique(db: Session, what: str, **details: Any) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateNameError(f"{what} already exists", **details)


def create_product(db: Session, data: Dict[str, Any], cache: Optional[CacheService] = None) -> Product:
    _category_or_404(db, data["category_id"])
    product = Product(**{**data, "name": data["name"].strip()})
    db.add(product)
    _commit_unique(db, "SKU", sku=data.get("sku"))
    db.refresh(product)
    _invalidate(cache, "invalidate_catalog")
    logger.info("product_created", product_id=product.id, name=product.name)
    return product


def update_product(db: Session, product_id: int, data: Dict[str, Any], cache: Optional[CacheService] = None) -> Product:
    """Partial update. Order items keep the price they were sold at."""
    product = _product_or_404(db, product_id)
    if data.get("category_id") is not None:
        _category_or_404(db, data["category_id"])
    for key, value in data.items():
        if value is not None:
            setattr(product, key, value.strip() if key == "name" else value)
    _commit_unique(db, "SKU", sku=data.get("sku"))
    db.refresh(product)
    _invalidate(cache, "invalidate_catalog")
    return product


def delete_product(db: Session, product_id: int, cache: Optional[CacheService] = None) -> None:
    """Soft delete; the row stays for order history."""
    product = _product_or_404(db, product_id)
    product.is_deleted = True
    product.is_available = False
    db.commit()
    _invalidate(cache, "invalidate_catalog")
    logger.info("product_deleted", product_id=product_id)


def set_product_availability(
    db: Session, product_id: int, is_available: bool, cache: Optional[CacheService] = None
) -> Product:
    product = _product_or_404(db, product_id)
    product.is_available = bool(is_available)
    db.commit()
    db.refresh(product)
    _invalidate(cache, "invalidate_catalog")
    return product


def update_stock(
    db: Session,
    product_id: int,
    *,
    stock_quantity: Optional[int] = None,
    low_stock_threshold: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> Product:
    product = _product_or_404(db, product_id)
    if stock_quantity is not None:
        product.stock_quantity = int(stock_quantity)
    if low_stock_threshold is not None:
        product.low_stock_threshold = int(low_stock_threshold)
    db.commit()
    db.refresh(product)
    _invalidate(cache, "invalidate_catalog")
    logger.info("stock_updated", product_id=product_id, stock_quantity=product.stock_quantity)
    return product


def low_stock_products(db: Session) -> List[Product]:
    return (
        db.query(Product)
        .filter(
            Product.is_deleted.is_(False),
            Product.is_available.is_(True),
            Product.stock_quantity <= Product.low_stock_threshold,
        )
        .order_by(Product.stock_quantity, Product.id)
        .all()
    )


# -----------------------------
# Variants
# -----------------------------


def _variant_or_404(db: Session, variant_id: int) -> ProductVariant:
    variant = (
        db.query(ProductVariant)
        .filter(ProductVariant.id == variant_id, ProductVariant.is_deleted.is_(False))
        .first()
    )
    if variant is None:
        raise VariantNotFoundError("Variant not found", variant_id=variant_id)
    return variant


def create_variant(db: Session, product_id: int, data: Dict[str, Any], cache: Optional[CacheService] = None) -> ProductVariant:
    _product_or_404(db, product_id)
    variant = ProductVariant(product_id=product_id, **data)
    db.add(variant)
    _commit_unique(db, "SKU", sku=data.get("sku"))
    db.refresh(variant)
    _invalidate(cache, "invalidate_catalog")
    return variant


def update_variant(db: Session, variant_id: int, data: Dict[str, Any], cache: Optional[CacheService] = None) -> ProductVariant:
    variant = _variant_or_404(db, variant_id)
    for key, value in data.items():
        if value is not None:
            setattr(variant, key, value)
    _commit_unique(db, "SKU", sku=data.get("sku"))
    db.refresh(variant)
    _invalidate(cache, "invalidate_catalog")
    return variant


def delete_variant(db: Session, variant_id: int, cache: Optional[CacheService] = None) -> None:
    variant = _variant_or_404(db, variant_id)
    variant.is_deleted = True
    variant.is_available = False
    db.commit()
    _invalidate(cache, "invalidate_catalog")


# -----------------------------
# Bulk pricing
# -----------------------------


def list_bulk_pricing_tiers(db: Session, product_id: int) -> List[BulkPricingTier]:
    _product_or_404(db, product_id)
    return (
        db.query(BulkPricingTier)
        .filter(BulkPricingTier.product_id == product_id)
        .order_by(BulkPricingTier.min_quantity)
        .all()
    )


def create_bulk_pricing_tier(
    db: Session, product_id: int, data: Dict[str, Any], cache: Optional[CacheService] = None
) -> BulkPricingTier:
    _product_or_404(db, product_id)
    if data["discount_type"] == "percentage" and Decimal(str(data["discount_value"])) > 100:
        raise InvalidDiscountError("Percentage discount cannot exceed 100%", fields=["discount_value"])
    tier = BulkPricingTier(product_id=product_id, **data)
    db.add(tier)
    db.commit()
    db.refresh(tier)
    _invalidate(cache, "invalidate_products")
    return tier


def delete_bulk_pricing_tier(db: Session, tier_id: int, cache: Optional[CacheService] = None) -> None:
    tier = db.query(BulkPricingTier).filter(BulkPricingTier.id == tier_id).first()
    if tier is None:
        raise NotFoundError("Bulk pricing tier not found", tier_id=tier_id)
    db.delete(tier)
    db.commit()
    _invalidate(cache, "invalidate_products")


def quote_bulk_price(db: Session, product_id: int, quantity: int) -> Dict[str, Any]:
    """Price a quantity against the product's tiers.

    Informational only: orders are always charged the plain unit price.
    """
    product = _product_or_404(db, product_id)
    tiers = sorted(product.bulk_pricing_tiers, key=lambda t: t.min_quantity, reverse=True)
    tier = next((t for t in tiers if quantity >= t.min_quantity), None)

    unit_price = Decimal(product.price)
    discounted = unit_price
    if tier is not None:
        if tier.discount_type == "percentage":
            discounted = unit_price - unit_price * Decimal(tier.discount_value) / 100
        else:
            discounted = unit_price - Decimal(tier.discount_value)
    discounted = max(Decimal("0"), discounted).quantize(CENTS)

    total_original = (unit_price * quantity).quantize(CENTS)
    total_discounted = (discounted * quantity).quantize(CENTS)
    return {
        "quantity": quantity,
        "original_unit_price": str(unit_price.quantize(CENTS)),
        "discounted_unit_price": str(discounted),
        "total_original": str(total_original),
        "total_discounted": str(total_discounted),
        "total_savings": str(max(Decimal("0"), total_original - total_discounted)),
        "applied_tier": BulkPricingTierOut.model_validate(tier).model_dump(mode="json") if tier else None,
    }
