from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

OrderStatusValue = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


class ShippingInfo(BaseModel):
    full_name: str = Field(min_length=2, max_length=100)
    phone: str = Field(min_length=10, max_length=20)
    address: str = Field(min_length=10, max_length=500)
    city: str = Field(min_length=2, max_length=100)
    postal_code: str = Field(min_length=3, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=500)

    def as_address(self) -> str:
        lines = [
            self.full_name.strip(),
            self.phone.strip(),
            self.address.strip(),
            f"{self.city.strip()}, {self.postal_code.strip()}",
        ]
        if self.notes and self.notes.strip():
            lines.append(f"Notes: {self.notes.strip()}")
        return "\n".join(lines)


class CheckoutRequest(BaseModel):
    shipping: ShippingInfo
    promo_code: Optional[str] = Field(default=None, max_length=50)


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    price_at_time: float

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    user_id: int
    status: str
    refund_status: str
    currency: str
    subtotal: float
    discount_amount: float
    shipping_amount: float
    tax_amount: float
    total_amount: float
    promo_code: Optional[str] = None
    shipping_address: str
    tracking_number: Optional[str] = None
    seller_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int
    item_count: int
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut]

    class Config:
        from_attributes = True


class OrderEventOut(BaseModel):
    id: int
    actor_id: Optional[int] = None
    field: str
    from_value: Optional[str] = None
    to_value: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderDetailOut(OrderOut):
    events: List[OrderEventOut]


class StatusUpdate(BaseModel):
    status: OrderStatusValue
    expected_version: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=500)


class AdminStatusUpdate(StatusUpdate):
    force: bool = False


class TrackingUpdate(BaseModel):
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    seller_notes: Optional[str] = Field(default=None, max_length=2000)
    expected_version: Optional[int] = None


class CancellationRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    expected_version: Optional[int] = None


class RefundDecision(BaseModel):
    decision: Literal["approve", "reject"]
    notes: Optional[str] = Field(default=None, max_length=2000)
    expected_version: Optional[int] = None


class RefundCompletion(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)
    expected_version: Optional[int] = None


class BulkStatusUpdate(BaseModel):
    order_ids: List[int] = Field(min_length=1)
    status: Literal["processing", "shipped", "delivered", "cancelled"]


class BulkOutcomeOut(BaseModel):
    order_id: int
    ok: bool
    kind: Optional[str] = None
    detail: Optional[str] = None
    status: Optional[str] = None
    version: Optional[int] = None


class BulkUpdateOut(BaseModel):
    succeeded: int
    failed: int
    results: List[BulkOutcomeOut]


class ReorderOut(BaseModel):
    added: int
    skipped: int
