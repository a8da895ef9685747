import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from core.auth import Actor
from core.config import settings
from core.db import atomic
from core.exceptions import (
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidPromoError,
    ProductUnavailableError,
    ResourceError,
)
from models.cart_item import CartItem
from models.order import Order, OrderStatus, RefundStatus
from models.order_item import OrderItem
from models.product import Product
from services import catalog, notifications, order_state, promotions
from services.pricing import cart_subtotal, compute_totals, to_money

logger = logging.getLogger(__name__)


def load_cart(db: Session, user_id: int):
    return (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .all()
    )


def checkout(db: Session, actor: Actor, shipping_address: str, promo_code: Optional[str] = None) -> Order:
    """Turn the buyer's cart into a pending order.

    Prices are read live from the catalog and frozen into the order items.
    The order, its items, the stock decrements, the promo redemption and the
    cart purge are committed as one unit of work; on any failure nothing is
    written and the cart is left as it was.
    """
    cart = load_cart(db, actor.user_id)
    if not cart:
        raise EmptyCartError()

    lines = []
    for item in cart:
        product = item.product
        if product is None or not product.is_active:
            raise ProductUnavailableError(product.name if product else f"Product {item.product_id}")
        # Best-effort early check; the conditional decrement below is authoritative
        if product.inventory_count < item.quantity:
            raise InsufficientStockError(product.name, product.inventory_count, item.quantity)
        lines.append((product, item.quantity, to_money(product.price)))

    subtotal = cart_subtotal((price, qty) for _, qty, price in lines)

    promotion = None
    discount = to_money(0)
    if promo_code and promo_code.strip():
        result = promotions.evaluate(db, promo_code, subtotal)
        if not result.valid:
            raise InvalidPromoError(result.message)
        promotion = result.promotion
        discount = result.discount_amount

    totals = compute_totals(subtotal, discount)

    with atomic(db):
        order = Order(
            user_id=actor.user_id,
            status=OrderStatus.PENDING.value,
            refund_status=RefundStatus.NONE.value,
            currency=settings.CURRENCY,
            subtotal=totals.subtotal,
            discount_amount=totals.discount,
            shipping_amount=totals.shipping,
            tax_amount=totals.tax,
            total_amount=totals.total,
            promo_code=promotion.code if promotion else None,
            shipping_address=shipping_address,
        )
        db.add(order)
        db.flush()

        for product, quantity, price in lines:
            order.items.append(OrderItem(product_id=product.id, quantity=quantity, price_at_time=price))
            if not catalog.decrement_inventory(db, product.id, quantity):
                available = db.query(Product.inventory_count).filter(Product.id == product.id).scalar() or 0
                raise InsufficientStockError(product.name, available, quantity)

        if promotion is not None and not promotions.redeem(db, promotion.id):
            raise InvalidPromoError("This promo code has reached its usage limit")

        db.query(CartItem).filter(CartItem.user_id == actor.user_id).delete(synchronize_session=False)
        order_state.record_event(db, order, actor, "status", None, OrderStatus.PENDING.value,
                                 note=f"Order placed with promo {promotion.code}" if promotion else "Order placed")

    for item in cart:
        db.expunge(item)
    for product, _, _ in lines:
        db.expire(product)
    if promotion is not None:
        db.expire(promotion)

    logger.info("Order %s placed by user %s: %s items, total %s", order.id, actor.user_id, len(lines), order.total_amount)
    notifications.order_placed(order)
    return order


def reorder(db: Session, actor: Actor, order_id: int) -> dict:
    """Copy a past order's lines back into the buyer's cart.

    Lines whose product is no longer active are skipped. Quantities merge
    into existing cart lines for the same product.
    """
    order = order_state.load_order(db, order_id)
    if order.user_id != actor.user_id:
        raise ForbiddenError("You can only reorder your own orders")

    available = [item for item in order.items if item.product is not None and item.product.is_active]
    skipped = len(order.items) - len(available)
    if not available:
        raise ResourceError("None of the products in this order are currently available")

    with atomic(db):
        existing = {item.product_id: item for item in load_cart(db, actor.user_id)}
        for line in available:
            cart_item = existing.get(line.product_id)
            if cart_item:
                cart_item.quantity += line.quantity
            else:
                cart_item = CartItem(user_id=actor.user_id, product_id=line.product_id, quantity=line.quantity)
                db.add(cart_item)
                existing[line.product_id] = cart_item

    logger.info("Order %s reordered by user %s: %s added, %s skipped", order.id, actor.user_id,
                len(available), skipped)
    return {"added": len(available), "skipped": skipped}
