"""Cart validation.

``validate_cart`` is advisory: it reads live stock but reserves nothing. The
order engine runs the same ``check_lines`` again inside its own transaction,
which is the check that counts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .inventory import StockTarget, target_for
from .models import Product, ProductVariant
from .schemas import CartValidationOut, LineError, ValidatedLine

NOT_FOUND = "NOT_FOUND"
UNAVAILABLE = "UNAVAILABLE"
VARIANT_NOT_FOUND = "VARIANT_NOT_FOUND"
VARIANT_UNAVAILABLE = "VARIANT_UNAVAILABLE"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
INVALID_QUANTITY = "INVALID_QUANTITY"

CENTS = Decimal("0.01")


def normalize_lines(items: Iterable[Any]) -> List[Dict[str, Any]]:
    """Accept pydantic models or dicts (``product_id``/``productId`` style) and return plain dicts."""
    lines = []
    for item in items or []:
        if hasattr(item, "model_dump"):
            item = item.model_dump()
        product_id = item.get("product_id", item.get("productId"))
        variant_id = item.get("variant_id", item.get("variantId"))
        quantity = item.get("quantity")
        lines.append(
            {
                "product_id": int(product_id),
                "variant_id": int(variant_id) if variant_id else None,
                "quantity": int(quantity) if quantity is not None else 0,
            }
        )
    return lines


def load_catalog(
    db: Session, lines: List[Mapping[str, Any]], *, for_update: bool = False
) -> Tuple[Dict[int, Product], Dict[int, ProductVariant]]:
    """Batch-read every product and variant the lines reference."""
    product_ids = sorted({line["product_id"] for line in lines})
    variant_ids = sorted({line["variant_id"] for line in lines if line.get("variant_id")})

    products: Dict[int, Product] = {}
    variants: Dict[int, ProductVariant] = {}

    if product_ids:
        stmt = select(Product).where(Product.id.in_(product_ids)).order_by(Product.id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        products = {p.id: p for p in db.execute(stmt).scalars()}

    if variant_ids:
        stmt = select(ProductVariant).where(ProductVariant.id.in_(variant_ids)).order_by(ProductVariant.id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        variants = {v.id: v for v in db.execute(stmt).scalars()}

    return products, variants


def _error(index: int, line: Mapping[str, Any], code: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {
        "index": index,
        "product_id": line["product_id"],
        "variant_id": line.get("variant_id"),
        "code": code,
        "message": message,
        **extra,
    }


def check_lines(
    lines: List[Mapping[str, Any]],
    products: Mapping[int, Product],
    variants: Mapping[int, ProductVariant],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Validate each line against the loaded rows.

    Returns ``(validated, errors)``. Lines drawing on the same stock target
    share its availability in request order.
    """
    validated: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    claimed: Dict[StockTarget, int] = {}

    for index, line in enumerate(lines):
        quantity = line["quantity"]
        if quantity <= 0:
            errors.append(_error(index, line, INVALID_QUANTITY, "Quantity must be at least 1", requested=quantity))
            continue

        product = products.get(line["product_id"])
        if product is None:
            errors.append(_error(index, line, NOT_FOUND, f"Product with ID {line['product_id']} not found"))
            continue
        if product.is_deleted or not product.is_available:
            errors.append(_error(index, line, UNAVAILABLE, f"{product.name} is currently unavailable"))
            continue

        variant = None
        variant_id = line.get("variant_id")
        if variant_id:
            variant = variants.get(variant_id)
            if variant is None or variant.product_id != product.id:
                errors.append(_error(index, line, VARIANT_NOT_FOUND, f"Variant not found for product {product.name}"))
                continue
            if variant.is_deleted or not variant.is_available:
                errors.append(
                    _error(
                        index,
                        line,
                        VARIANT_UNAVAILABLE,
                        f"{product.name} ({variant.name}) is currently unavailable",
                    )
                )
                continue

        stock_row = variant if variant is not None else product
        label = f"{product.name} ({variant.name})" if variant is not None else product.name
        target = target_for(product.id, variant_id)
        available = int(stock_row.stock_quantity) - claimed.get(target, 0)

        if quantity > available:
            errors.append(
                _error(
                    index,
                    line,
                    INSUFFICIENT_STOCK,
                    f"Insufficient stock for {label}. Available: {max(available, 0)}, Requested: {quantity}",
                    requested=quantity,
                    available=max(available, 0),
                )
            )
            continue

        claimed[target] = claimed.get(target, 0) + quantity
        unit_price = Decimal(str(stock_row.price)).quantize(CENTS)
        validated.append(
            {
                "index": index,
                "product_id": product.id,
                "variant_id": variant.id if variant is not None else None,
                "product_name": product.name,
                "variant_name": variant.name if variant is not None else None,
                "quantity": quantity,
                "unit_price": unit_price,
                "subtotal": (unit_price * quantity).quantize(CENTS),
                "available_stock": int(stock_row.stock_quantity),
                "target": target,
            }
        )

    return validated, errors


def validate_cart(db: Session, items: Iterable[Any]) -> CartValidationOut:
    lines = normalize_lines(items)
    if not lines:
        return CartValidationOut(valid=False, errors=[], validated_items=[])

    products, variants = load_catalog(db, lines)
    validated, errors = check_lines(lines, products, variants)

    return CartValidationOut(
        valid=not errors,
        errors=[LineError(**e) for e in errors],
        validated_items=[ValidatedLine(**{k: v for k, v in line.items() if k != "target"}) for line in validated],
    )
