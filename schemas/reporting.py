from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class OrderFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[Literal["pending", "processing", "shipped", "delivered", "cancelled"]] = None
    date_range: Literal["all", "today", "week", "month", "year"] = "all"
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class MonthlyRevenue(BaseModel):
    month: str
    revenue: float
    orders: int


class TopProduct(BaseModel):
    id: int
    name: str
    revenue: float
    orders: int
    units: int


class RecentOrder(BaseModel):
    id: int
    total_amount: float
    status: str
    created_at: datetime


class SellerAnalyticsOut(BaseModel):
    total_revenue: float
    total_orders: int
    completed_orders: int
    pending_orders: int
    cancelled_orders: int
    average_order_value: float
    revenue_by_month: List[MonthlyRevenue]
    top_products: List[TopProduct]
    recent_orders: List[RecentOrder]


class DailyPoint(BaseModel):
    date: str
    orders: int
    revenue: float


class TopStore(BaseModel):
    id: int
    name: str
    revenue: float
    orders: int


class PlatformStatsOut(BaseModel):
    total_revenue: float
    total_orders: int
    orders_by_status: Dict[str, int]
    pending_refunds: int
    daily: List[DailyPoint]
    top_stores: List[TopStore]
