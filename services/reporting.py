"""Read-only projections over committed orders and order items.

Nothing in here writes. Every figure is recomputed from ``orders`` and
``order_items`` rows on each call, so the numbers can always be rebuilt
from source data. A row that cannot be interpreted (unknown status,
missing amount, ...) is logged and left out of the aggregate.
"""
import calendar
import csv
import io
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Query, Session, selectinload

from core.config import settings
from models.order import Order, OrderStatus, RefundStatus
from models.order_item import OrderItem
from models.product import Product
from models.store import Store
from models.user import User
from schemas.reporting import OrderFilters
from services import catalog
from services.pricing import to_money

logger = logging.getLogger(__name__)

REVENUE_STATUSES = {OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value}
KNOWN_STATUSES = {s.value for s in OrderStatus}
CSV_COLUMNS = ["order_id", "date", "status", "total", "item_count"]
RECENT_ORDERS = 10


# Listing

def _range_start(date_range: str, now: datetime) -> Optional[datetime]:
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "week":
        return now - timedelta(days=7)
    if date_range == "month":
        return _months_back(now, 1)
    if date_range == "year":
        return _months_back(now, 12)
    return None


def _months_back(now: datetime, months: int) -> datetime:
    year, month = divmod(now.year * 12 + now.month - 1 - months, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def apply_filters(query: Query, filters: Optional[OrderFilters], now: Optional[datetime] = None) -> Query:
    if filters is None:
        return query.order_by(Order.created_at.desc(), Order.id.desc())
    now = now or datetime.utcnow()

    if filters.status:
        query = query.filter(Order.status == filters.status)

    start = _range_start(filters.date_range, now)
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if filters.date_from is not None:
        query = query.filter(Order.created_at >= filters.date_from)
    if filters.date_to is not None:
        query = query.filter(Order.created_at <= filters.date_to)

    if filters.search and filters.search.strip():
        term = f"%{filters.search.strip()}%"
        query = query.filter(or_(
            cast(Order.id, String).ilike(term),
            Order.buyer.has(or_(User.full_name.ilike(term), User.email.ilike(term))),
            Order.items.any(OrderItem.product.has(Product.name.ilike(term))),
        ))

    return query.order_by(Order.created_at.desc(), Order.id.desc())


def _base_query(db: Session) -> Query:
    return db.query(Order).options(
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.buyer),
    )


def list_orders(db: Session, buyer_id: int, filters: Optional[OrderFilters] = None) -> List[Order]:
    query = _base_query(db).filter(Order.user_id == buyer_id)
    return apply_filters(query, filters).all()


def list_seller_orders(db: Session, seller_id: int, filters: Optional[OrderFilters] = None) -> List[Order]:
    """Orders containing at least one product from the seller's stores."""
    query = _base_query(db).filter(
        Order.items.any(OrderItem.product_id.in_(catalog.seller_product_ids_select(seller_id)))
    )
    return apply_filters(query, filters).all()


def list_all_orders(db: Session, filters: Optional[OrderFilters] = None) -> List[Order]:
    return apply_filters(_base_query(db), filters).all()


# Row hygiene

def _amount(value) -> Decimal:
    if value is None:
        raise ValueError("missing amount")
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"non-finite amount {value!r}")
    return to_money(amount)


def _clean_orders(rows: Iterable) -> List[dict]:
    """Normalize order rows, dropping those that cannot be interpreted."""
    cleaned = []
    for row in rows:
        try:
            if row.status not in KNOWN_STATUSES:
                raise ValueError(f"unknown status {row.status!r}")
            if row.created_at is None:
                raise ValueError("missing created_at")
            cleaned.append({
                "id": row.id,
                "status": row.status,
                "refund_status": getattr(row, "refund_status", None),
                "total_amount": _amount(row.total_amount),
                "created_at": row.created_at,
            })
        except (ValueError, TypeError, InvalidOperation) as exc:
            logger.warning("Skipping order row %s in report: %s", getattr(row, "id", "?"), exc)
    return cleaned


# Seller analytics

def seller_analytics(db: Session, seller_id: int) -> dict:
    """Revenue and order figures for the orders touching a seller's products.

    Revenue is the seller's own line totals (``price_at_time * quantity``)
    on orders that have shipped or been delivered.
    """
    rows = (
        db.query(
            OrderItem.order_id,
            OrderItem.product_id,
            OrderItem.quantity,
            OrderItem.price_at_time,
            Product.name.label("product_name"),
            Order.status,
            Order.total_amount,
            Order.created_at,
        )
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .join(Store, Store.id == Product.store_id)
        .filter(Store.owner_id == seller_id)
        .all()
    )

    orders: Dict[int, dict] = {}
    products: Dict[int, dict] = {}
    for row in rows:
        try:
            if row.status not in KNOWN_STATUSES:
                raise ValueError(f"unknown status {row.status!r}")
            if row.quantity is None or row.quantity < 1:
                raise ValueError(f"bad quantity {row.quantity!r}")
            line_total = _amount(row.price_at_time) * row.quantity
            order_total = _amount(row.total_amount)
        except (ValueError, TypeError, InvalidOperation) as exc:
            logger.warning("Skipping order item of order %s in seller report: %s", row.order_id, exc)
            continue

        order = orders.setdefault(row.order_id, {
            "id": row.order_id,
            "status": row.status,
            "total_amount": order_total,
            "created_at": row.created_at,
            "seller_revenue": Decimal("0.00"),
        })
        order["seller_revenue"] += line_total

        if row.status == OrderStatus.CANCELLED.value:
            continue
        product = products.setdefault(row.product_id, {
            "id": row.product_id,
            "name": row.product_name or "Unknown",
            "revenue": Decimal("0.00"),
            "orders": set(),
            "units": 0,
        })
        product["revenue"] += line_total
        product["orders"].add(row.order_id)
        product["units"] += row.quantity

    revenue_orders = [o for o in orders.values() if o["status"] in REVENUE_STATUSES]
    total_revenue = sum((o["seller_revenue"] for o in revenue_orders), Decimal("0.00"))

    by_month: Dict[str, dict] = defaultdict(lambda: {"revenue": Decimal("0.00"), "orders": 0})
    for order in revenue_orders:
        if order["created_at"] is None:
            continue
        key = order["created_at"].strftime("%Y-%m")
        by_month[key]["revenue"] += order["seller_revenue"]
        by_month[key]["orders"] += 1
    revenue_by_month = [
        {"month": month, "revenue": data["revenue"], "orders": data["orders"]}
        for month, data in sorted(by_month.items())
    ][-settings.ANALYTICS_MONTHS:]

    top_products = sorted(
        (
            {"id": p["id"], "name": p["name"], "revenue": p["revenue"],
             "orders": len(p["orders"]), "units": p["units"]}
            for p in products.values()
        ),
        key=lambda p: (-p["revenue"], p["id"]),
    )[:settings.ANALYTICS_TOP_PRODUCTS]

    recent = sorted(
        (o for o in orders.values() if o["created_at"] is not None),
        key=lambda o: (o["created_at"], o["id"]),
        reverse=True,
    )[:RECENT_ORDERS]

    return {
        "total_revenue": total_revenue,
        "total_orders": len(orders),
        "completed_orders": sum(1 for o in orders.values() if o["status"] == OrderStatus.DELIVERED.value),
        "pending_orders": sum(1 for o in orders.values() if o["status"] == OrderStatus.PENDING.value),
        "cancelled_orders": sum(1 for o in orders.values() if o["status"] == OrderStatus.CANCELLED.value),
        "average_order_value": to_money(total_revenue / len(revenue_orders)) if revenue_orders else Decimal("0.00"),
        "revenue_by_month": revenue_by_month,
        "top_products": top_products,
        "recent_orders": [
            {"id": o["id"], "total_amount": o["total_amount"], "status": o["status"], "created_at": o["created_at"]}
            for o in recent
        ],
    }


# Platform statistics

def daily_series(orders: List[dict], days: int, now: datetime) -> List[dict]:
    """Zero-filled per-day order counts and revenue for the trailing ``days`` days."""
    today = now.date()
    buckets = {
        today - timedelta(days=offset): {"orders": 0, "revenue": Decimal("0.00")}
        for offset in range(days)
    }
    for order in orders:
        bucket = buckets.get(order["created_at"].date())
        if bucket is None:
            continue
        bucket["orders"] += 1
        if order["status"] in REVENUE_STATUSES:
            bucket["revenue"] += order["total_amount"]
    return [
        {"date": day.isoformat(), "orders": data["orders"], "revenue": data["revenue"]}
        for day, data in sorted(buckets.items())
    ]


def top_stores(db: Session, limit: int) -> List[dict]:
    rows = (
        db.query(Store.id, Store.name, OrderItem.quantity, OrderItem.price_at_time, OrderItem.order_id)
        .join(Product, Product.store_id == Store.id)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status.in_(REVENUE_STATUSES))
        .all()
    )
    stores: Dict[int, dict] = {}
    for row in rows:
        try:
            line_total = _amount(row.price_at_time) * row.quantity
        except (ValueError, TypeError, InvalidOperation) as exc:
            logger.warning("Skipping order item of order %s in store ranking: %s", row.order_id, exc)
            continue
        store = stores.setdefault(row.id, {"id": row.id, "name": row.name, "revenue": Decimal("0.00"), "orders": set()})
        store["revenue"] += line_total
        store["orders"].add(row.order_id)
    ranked = sorted(stores.values(), key=lambda s: (-s["revenue"], s["id"]))[:limit]
    return [{"id": s["id"], "name": s["name"], "revenue": s["revenue"], "orders": len(s["orders"])} for s in ranked]


def platform_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    orders = _clean_orders(
        db.query(Order.id, Order.status, Order.refund_status, Order.total_amount, Order.created_at).all()
    )

    by_status = {status: 0 for status in sorted(KNOWN_STATUSES)}
    for order in orders:
        by_status[order["status"]] += 1

    return {
        "total_revenue": sum((o["total_amount"] for o in orders if o["status"] in REVENUE_STATUSES), Decimal("0.00")),
        "total_orders": len(orders),
        "orders_by_status": by_status,
        "pending_refunds": sum(1 for o in orders if o["refund_status"] == RefundStatus.REQUESTED.value),
        "daily": daily_series(orders, settings.ANALYTICS_DAILY_WINDOW_DAYS, now),
        "top_stores": top_stores(db, settings.ANALYTICS_TOP_PRODUCTS),
    }


# CSV export

def export_csv(orders: Iterable[Order]) -> bytes:
    """One row per order, fixed column order."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for order in orders:
        try:
            row = [
                order.id,
                order.created_at.date().isoformat(),
                order.status,
                f"{_amount(order.total_amount):.2f}",
                order.item_count,
            ]
        except (ValueError, TypeError, InvalidOperation, AttributeError) as exc:
            logger.warning("Skipping order %s in CSV export: %s", getattr(order, "id", "?"), exc)
            continue
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")
