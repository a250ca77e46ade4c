from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @classmethod
    def values(cls) -> List[str]:
        return [s.value for s in cls]


# -----------------------------
# Cart / order input
# -----------------------------


class LineItemIn(BaseModel):
    # quantity is range-checked by the cart validator so that a bad line is
    # reported per line instead of failing the whole request body
    product_id: int = Field(..., gt=0, description="Product ID")
    variant_id: Optional[int] = Field(None, gt=0, description="Variant ID (optional)")
    quantity: int = Field(..., description="Requested quantity")


class CartValidateRequest(BaseModel):
    items: List[LineItemIn] = Field(default_factory=list)


class OrderCreate(BaseModel):
    customer_name: str = Field(..., min_length=2, max_length=100)
    phone: str = Field(..., min_length=10, max_length=20)
    address: str = Field(..., min_length=10, max_length=500)
    barangay: str = Field(..., min_length=1, max_length=100)
    landmarks: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=500)
    items: List[LineItemIn] = Field(default_factory=list)


class OrderStatusUpdate(BaseModel):
    # plain str so unknown values reach the state machine and get the valid list back
    status: str
    message: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# -----------------------------
# Cart validation output
# -----------------------------


class LineError(BaseModel):
    index: int
    product_id: int
    variant_id: Optional[int] = None
    code: str
    message: str
    requested: Optional[int] = None
    available: Optional[int] = None


class ValidatedLine(BaseModel):
    index: int
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    variant_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    available_stock: int


class CartValidationOut(BaseModel):
    valid: bool
    errors: List[LineError] = []
    validated_items: List[ValidatedLine] = []


# -----------------------------
# Order output
# -----------------------------


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    variant_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class StatusHistoryOut(BaseModel):
    id: int
    from_status: Optional[str] = None
    to_status: str
    changed_by_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SmsLogOut(BaseModel):
    id: int
    order_id: Optional[int] = None
    destination: str
    message: str
    status: str
    provider: Optional[str] = None
    error: Optional[str] = None
    attempts: int
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderPlaced(BaseModel):
    order_number: str
    total_amount: Decimal
    status: OrderStatus
    items: List[OrderItemOut] = []

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    order_number: str
    customer_id: Optional[int] = None
    customer_name: str
    phone: str
    address: str
    barangay: str
    landmarks: Optional[str] = None
    notes: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    model_config = {"from_attributes": True}


class OrderDetailOut(OrderOut):
    status_history: List[StatusHistoryOut] = []
    sms_logs: List[SmsLogOut] = []


class OrderTrackOut(BaseModel):
    order_number: str
    status: OrderStatus
    total_amount: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    model_config = {"from_attributes": True}


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int


# -----------------------------
# Catalog
# -----------------------------


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class CategoryOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sku: Optional[str] = Field(None, max_length=50)
    price: Decimal = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_available: bool = True


class VariantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    sku: Optional[str] = Field(None, max_length=50)
    price: Optional[Decimal] = Field(None, ge=0)
    stock_quantity: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None


class VariantOut(BaseModel):
    id: int
    product_id: int
    name: str
    sku: Optional[str] = None
    price: Decimal
    stock_quantity: int
    is_available: bool

    model_config = {"from_attributes": True}


class BulkPricingTierCreate(BaseModel):
    min_quantity: int = Field(..., gt=1)
    discount_type: str = Field(..., pattern="^(percentage|fixed)$")
    discount_value: Decimal = Field(..., ge=0)


class BulkPricingTierOut(BaseModel):
    id: int
    product_id: int
    min_quantity: int
    discount_type: str
    discount_value: Decimal

    model_config = {"from_attributes": True}


class ProductCreate(BaseModel):
    category_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    unit: str = Field("piece", min_length=1, max_length=50)
    sku: Optional[str] = Field(None, max_length=50)
    price: Decimal = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    is_available: bool = True


class ProductUpdate(BaseModel):
    category_id: Optional[int] = Field(None, gt=0)
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    unit: Optional[str] = Field(None, min_length=1, max_length=50)
    sku: Optional[str] = Field(None, max_length=50)
    price: Optional[Decimal] = Field(None, ge=0)
    is_available: Optional[bool] = None


class StockUpdate(BaseModel):
    stock_quantity: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class AvailabilityUpdate(BaseModel):
    is_available: bool


class ProductOut(BaseModel):
    id: int
    category_id: int
    name: str
    description: Optional[str] = None
    unit: str
    sku: Optional[str] = None
    price: Decimal
    stock_quantity: int
    low_stock_threshold: int
    is_available: bool
    variants: List[VariantOut] = []
    bulk_pricing_tiers: List[BulkPricingTierOut] = []

    model_config = {"from_attributes": True}


class CategoryDetailOut(CategoryOut):
    products: List[ProductOut] = []


# -----------------------------
# Notifications
# -----------------------------


class SmsSendRequest(BaseModel):
    destination: str = Field(..., min_length=3, max_length=255)
    message: str = Field(..., min_length=1, max_length=640)
    order_id: Optional[int] = None


class SendResultOut(BaseModel):
    sent: bool
    provider: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class SmsStatsOut(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int
    success_rate: str


class BulkPriceQuote(BaseModel):
    quantity: int
    original_unit_price: Decimal
    discounted_unit_price: Decimal
    total_original: Decimal
    total_discounted: Decimal
    total_savings: Decimal
    applied_tier: Optional[BulkPricingTierOut] = None
