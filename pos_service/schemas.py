from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Request bodies are loose; field rules (product id shapes, integer cents,
# station names) live in the repository and engines.

class OrderItemCreate(BaseModel):
    """Schema for one line of an incoming order"""
    product_id: Any = None
    name_snapshot: Optional[Any] = None
    name: Optional[Any] = None
    price_cents_snapshot: Optional[Any] = None
    price_cents: Optional[Any] = None
    qty: Optional[Any] = None
    station: Optional[Any] = None
    status: Optional[Any] = None
    notes: Optional[str] = None
    group_id: Optional[str] = None


class OrderCreate(BaseModel):
    """Schema for creating an order"""
    type: Optional[Any] = Field(None, json_schema_extra={"example": "TAKEOUT"})
    customer_name: Optional[str] = Field(None, max_length=120)
    customer_phone: Optional[str] = Field(None, max_length=40)
    address_json: Optional[Any] = None
    notes: Optional[str] = None
    items: Optional[List[OrderItemCreate]] = None
    delivery_fee_cents: Optional[Any] = None


class StatusUpdate(BaseModel):
    """Schema for moving an order or an item to another status"""
    status: Optional[Any] = Field(None, json_schema_extra={"example": "LISTO"})


class PrintUpdate(BaseModel):
    """Schema for recording that a ticket was printed"""
    type: Optional[Any] = Field(None, json_schema_extra={"example": "customer"})


class PaymentCreate(BaseModel):
    """Schema for a cash-register payment"""
    order_id: Optional[Any] = None
    amount_cents: Optional[Any] = None
    method: Optional[Any] = None


class OrderItemRead(BaseModel):
    """Schema for reading an order item"""
    id: int
    order_id: int
    product_id: Optional[int] = None
    station: str
    status: str
    name_snapshot: str
    price_cents_snapshot: int
    qty: int
    notes: Optional[str] = None
    group_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    """Schema for reading an order without its items"""
    id: int
    order_date: date
    order_number: int
    type: str
    status: str
    payment_status: str
    paid_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    address_json: Optional[Any] = None
    notes: Optional[str] = None
    subtotal_cents: int
    delivery_fee_cents: int
    total_cents: int
    printed_customer_at: Optional[datetime] = None
    printed_packaging_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderRead(OrderSummary):
    """Schema for reading an order with the items visible to the caller"""
    items: List[OrderItemRead] = []


class OrderEnvelope(BaseModel):
    order: OrderRead


class OrderList(BaseModel):
    orders: List[OrderRead]


class OrderCreated(BaseModel):
    order_id: int
    order_number: int
    order: OrderRead


class ItemEnvelope(BaseModel):
    item: OrderItemRead


class PrintedRead(BaseModel):
    printed_customer_at: Optional[datetime] = None
    printed_packaging_at: Optional[datetime] = None


class TicketRead(BaseModel):
    ticket_text: str


class PaymentOrderRead(BaseModel):
    id: int
    payment_status: str
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentRecorded(BaseModel):
    ok: bool = True
    order: PaymentOrderRead


class CategoryRead(BaseModel):
    name: str

    class Config:
        from_attributes = True


class ProductRead(BaseModel):
    """Schema for reading a catalog product"""
    id: int
    name: str
    description: Optional[str] = None
    price_cents: int
    station: str
    is_available: bool
    image_url: Optional[str] = None
    category: Optional[CategoryRead] = None

    class Config:
        from_attributes = True


class ProductList(BaseModel):
    data: List[ProductRead]


class CleanupResult(BaseModel):
    deleted_orders: int
    deleted_items: int
    deleted_payments: int
    duration_ms: int


def project_order(order, items) -> OrderRead:
    """Order row plus the given (already role-filtered) item rows"""
    summary = OrderSummary.model_validate(order)
    return OrderRead(
        **summary.model_dump(),
        items=[OrderItemRead.model_validate(item) for item in items],
    )


def order_row(order) -> Dict[str, Any]:
    """Plain JSON-ready mapping of an order row, used by the change feed"""
    return OrderSummary.model_validate(order).model_dump(mode="json")


def item_row(item) -> Dict[str, Any]:
    return OrderItemRead.model_validate(item).model_dump(mode="json")


def order_stations(order) -> List[str]:
    """Stations holding at least one item of the order"""
    return sorted({item.station for item in order.items})
