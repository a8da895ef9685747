from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PromotionCreate(BaseModel):
    code: str = Field(min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(gt=0)
    min_purchase_amount: float = Field(default=0, ge=0)
    max_discount_amount: Optional[float] = Field(default=None, gt=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("valid_from", "valid_until")
    @classmethod
    def to_naive_utc(cls, v):
        # Stored and compared as naive UTC
        if v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("A percentage discount cannot exceed 100")
        return self


class PromotionOut(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    min_purchase_amount: float
    max_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    usage_count: int
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


class PromotionEvaluateRequest(BaseModel):
    code: str
    cart_total: float = Field(ge=0)


class PromotionEvaluateResponse(BaseModel):
    valid: bool
    discount_amount: float
    message: str
