import logging
from typing import Optional

from sqlalchemy.orm import Session

from core.auth import Actor
from core.db import atomic
from core.exceptions import (
    AlreadyRequestedError,
    ForbiddenError,
    InvalidInputError,
    NotPendingError,
)
from models.order import Order, OrderStatus, RefundStatus
from services import notifications, order_state

logger = logging.getLogger(__name__)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"
MAX_REASON_LENGTH = 500


def request_cancellation(db: Session, actor: Actor, order_id: int, reason: str,
                         expected_version: Optional[int] = None) -> Order:
    """Buyer asks to cancel a pending order.

    Only records the request; ``status`` stays untouched until a seller or
    admin adjudicates it.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidInputError("Please provide a reason for cancellation")
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidInputError(f"Cancellation reason must be at most {MAX_REASON_LENGTH} characters")

    order = order_state.load_order(db, order_id)
    if order.user_id != actor.user_id:
        raise ForbiddenError("You can only cancel your own orders")
    order_state.check_version(order, expected_version)
    if order.status != OrderStatus.PENDING.value:
        raise NotPendingError(order.status)
    if order.refund_status != RefundStatus.NONE.value:
        raise AlreadyRequestedError(order.refund_status)

    with atomic(db):
        order.cancellation_reason = reason
        order_state.apply_refund_status(db, actor, order, RefundStatus.REQUESTED.value, note=reason)

    logger.info("Cancellation requested for order %s by buyer %s", order.id, actor.user_id)
    return order


def adjudicate_refund(db: Session, actor: Actor, order_id: int, decision: str,
                      notes: Optional[str] = None, expected_version: Optional[int] = None) -> Order:
    """Seller or admin approves or rejects a requested cancellation.

    Approval cancels the order. Rejection needs a reason and leaves the
    fulfillment status where it was.
    """
    notes = (notes or "").strip() or None
    if decision not in (DECISION_APPROVE, DECISION_REJECT):
        raise InvalidInputError("Decision must be 'approve' or 'reject'")
    if decision == DECISION_REJECT and not notes:
        raise InvalidInputError("Please provide a reason for rejecting the cancellation")

    order = order_state.load_order(db, order_id)
    order_state.assert_can_manage(db, actor, order)
    order_state.check_version(order, expected_version)

    target = RefundStatus.APPROVED.value if decision == DECISION_APPROVE else RefundStatus.REJECTED.value
    order_state.validate_refund_transition(order, target)

    previous_status = order.status
    with atomic(db):
        order_state.apply_refund_status(db, actor, order, target, note=notes)
        if decision == DECISION_APPROVE:
            order.seller_notes = notes or "Refund approved"
            if order.status != OrderStatus.CANCELLED.value:
                order_state.validate_status_transition(order, OrderStatus.CANCELLED.value)
                order_state.apply_status(db, actor, order, OrderStatus.CANCELLED.value, note="Cancellation approved")
        else:
            order.seller_notes = notes

    logger.info("Refund for order %s %s by user %s", order.id, target, actor.user_id)
    notifications.refund_updated(order)
    if order.status != previous_status:
        notifications.status_changed(order, previous_status)
    return order


def complete_refund(db: Session, actor: Actor, order_id: int, notes: Optional[str] = None,
                    expected_version: Optional[int] = None) -> Order:
    """Mark an approved refund as paid out. Bookkeeping only."""
    order = order_state.load_order(db, order_id)
    order_state.assert_can_manage(db, actor, order)
    order_state.check_version(order, expected_version)
    order_state.validate_refund_transition(order, RefundStatus.COMPLETED.value)

    with atomic(db):
        order_state.apply_refund_status(db, actor, order, RefundStatus.COMPLETED.value,
                                        note=(notes or "").strip() or None)

    logger.info("Refund for order %s completed by user %s", order.id, actor.user_id)
    notifications.refund_updated(order)
    return order
