"""Transition guard for ``Order.status`` and ``Order.refund_status``.

Every mutation of either field goes through this module. The functions
here validate who may perform a change and whether the change is legal;
they mutate the in-session order but never commit. Callers wrap them in
``core.db.atomic`` so the version check and the event row are written
together with the state change.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from core.auth import Actor
from core.exceptions import (
    ConflictError,
    ConcurrentUpdateError,
    ForbiddenError,
    InvalidInputError,
    InvalidRefundStateError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from models.order import Order, OrderStatus, RefundStatus
from models.order_event import OrderEvent
from services import catalog

logger = logging.getLogger(__name__)

FULFILLMENT_FLOW = [
    OrderStatus.PENDING.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]
TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}

REFUND_TRANSITIONS = {
    RefundStatus.NONE.value: {RefundStatus.REQUESTED.value},
    RefundStatus.REQUESTED.value: {RefundStatus.APPROVED.value, RefundStatus.REJECTED.value},
    RefundStatus.APPROVED.value: {RefundStatus.COMPLETED.value},
}

ALL_STATUSES = {s.value for s in OrderStatus}


def load_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).one_or_none()
    if not order:
        raise OrderNotFoundError(order_id)
    return order


def can_manage(db: Session, actor: Actor, order: Order) -> bool:
    if actor.is_admin:
        return True
    return actor.is_seller and catalog.order_belongs_to_seller(db, order.id, actor.user_id)


def assert_can_manage(db: Session, actor: Actor, order: Order) -> None:
    if not can_manage(db, actor, order):
        logger.info("User %s refused management of order %s", actor.user_id, order.id)
        raise ForbiddenError("You don't own this order")


def assert_can_view(db: Session, actor: Actor, order: Order) -> None:
    if order.user_id == actor.user_id:
        return
    if not can_manage(db, actor, order):
        # Not leaking existence of other buyers' orders
        raise OrderNotFoundError(order.id)


def check_version(order: Order, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != order.version:
        raise ConcurrentUpdateError(
            f"Order {order.id} has changed (version {order.version}, expected {expected_version}). "
            "Refresh and try again."
        )


def validate_status_transition(order: Order, target: str, force: bool = False) -> None:
    """Raise unless ``order.status -> target`` is a legal edge.

    Legal edges are forward moves along pending -> processing -> shipped ->
    delivered (steps may be skipped) and a move to cancelled from any
    non-terminal status. ``force`` lifts every rule except re-setting the
    current value.
    """
    if target not in ALL_STATUSES:
        raise InvalidInputError(f"Unknown order status '{target}'")
    current = order.status
    if target == current:
        raise InvalidTransitionError(current, target)
    if force:
        return
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(current, target)
    if target == OrderStatus.CANCELLED.value:
        return
    if FULFILLMENT_FLOW.index(target) <= FULFILLMENT_FLOW.index(current):
        raise InvalidTransitionError(current, target)
    if order.refund_status == RefundStatus.REQUESTED.value:
        raise ConflictError("A cancellation request is awaiting a decision. Approve or reject it first.")


def validate_refund_transition(order: Order, target: str) -> None:
    current = order.refund_status or RefundStatus.NONE.value
    if target not in REFUND_TRANSITIONS.get(current, set()):
        raise InvalidRefundStateError(current, target)


def record_event(db: Session, order: Order, actor: Optional[Actor], field: str,
                 from_value: Optional[str], to_value: Optional[str], note: Optional[str] = None) -> OrderEvent:
    event = OrderEvent(
        order_id=order.id,
        actor_id=actor.user_id if actor else None,
        field=field,
        from_value=from_value,
        to_value=to_value,
        note=note,
    )
    db.add(event)
    return event


def apply_status(db: Session, actor: Actor, order: Order, target: str, note: Optional[str] = None) -> str:
    """Write an already validated status change. Returns the previous status."""
    previous = order.status
    order.status = target
    if target == OrderStatus.CANCELLED.value:
        if order.cancelled_at is None:
            order.cancelled_at = datetime.utcnow()
    else:
        order.cancelled_at = None
    record_event(db, order, actor, "status", previous, target, note)
    return previous


def apply_refund_status(db: Session, actor: Actor, order: Order, target: str, note: Optional[str] = None) -> str:
    previous = order.refund_status
    order.refund_status = target
    record_event(db, order, actor, "refund_status", previous, target, note)
    return previous
