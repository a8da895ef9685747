"""Buyer-facing e-mails sent after an order change has been committed.

A notification is a side effect of an already-committed change, so a
delivery problem is logged and never surfaces to the caller.
"""
import logging

from models.order import Order
from services import email as email_service

logger = logging.getLogger(__name__)


def _send(order: Order, subject: str, template: str, **context) -> None:
    buyer = order.buyer
    if buyer is None or not buyer.email:
        logger.warning("Order %s has no buyer e-mail, skipping %r", order.id, subject)
        return
    try:
        email_service.send_templated_email(
            buyer.email,
            subject,
            template,
            {"name": buyer.full_name or buyer.email, "order": order, **context},
        )
    except Exception:
        logger.exception("Could not send %r for order %s", subject, order.id)


def order_placed(order: Order) -> None:
    items = [
        {
            "name": item.product.name if item.product else f"Product {item.product_id}",
            "quantity": item.quantity,
            "price": item.price_at_time,
        }
        for item in order.items
    ]
    _send(order, f"Order #{order.id} confirmed", "emails/order_placed.txt", items=items)


def status_changed(order: Order, previous_status: str) -> None:
    _send(order, f"Order #{order.id} is {order.status}", "emails/order_status.txt",
          previous_status=previous_status)


def refund_updated(order: Order) -> None:
    _send(order, f"Cancellation update for order #{order.id}", "emails/refund_update.txt")
