import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from core.auth import Actor
from core.config import settings
from core.db import atomic
from core.exceptions import ForbiddenError, InvalidInputError, WorkflowError
from models.order import Order, OrderStatus, RefundStatus
from services import notifications, order_state

logger = logging.getLogger(__name__)


@dataclass
class BulkOutcome:
    order_id: int
    ok: bool
    kind: Optional[str] = None
    detail: Optional[str] = None
    order: Optional[Order] = None


def update_status(db: Session, actor: Actor, order_id: int, new_status: str,
                  expected_version: Optional[int] = None, force: bool = False,
                  note: Optional[str] = None) -> Order:
    """Move an order to ``new_status`` on behalf of a seller or admin.

    ``force`` is an admin override that ignores the fulfillment order and
    terminal states.
    """
    if force and not actor.is_admin:
        raise ForbiddenError("Only administrators can force an order status")

    order = order_state.load_order(db, order_id)
    order_state.assert_can_manage(db, actor, order)
    order_state.check_version(order, expected_version)
    order_state.validate_status_transition(order, new_status, force=force)

    # Cancelling settles an open cancellation request in the same unit of work
    settles_request = (new_status == OrderStatus.CANCELLED.value
                       and order.refund_status == RefundStatus.REQUESTED.value)

    with atomic(db):
        previous = order_state.apply_status(db, actor, order, new_status, note=note)
        if settles_request:
            order_state.apply_refund_status(db, actor, order, RefundStatus.APPROVED.value,
                                            note="Order cancelled")

    logger.info("Order %s status %s -> %s by user %s%s", order.id, previous, new_status,
                actor.user_id, " (forced)" if force else "")
    notifications.status_changed(order, previous)
    if settles_request:
        notifications.refund_updated(order)
    return order


def update_tracking(db: Session, actor: Actor, order_id: int, tracking_number: Optional[str],
                    seller_notes: Optional[str] = None, expected_version: Optional[int] = None) -> Order:
    """Set tracking number and/or seller notes. Allowed at any status."""
    if tracking_number is None and seller_notes is None:
        raise InvalidInputError("Provide a tracking number or seller notes")

    order = order_state.load_order(db, order_id)
    order_state.assert_can_manage(db, actor, order)
    order_state.check_version(order, expected_version)

    with atomic(db):
        if tracking_number is not None:
            previous = order.tracking_number
            order.tracking_number = tracking_number.strip() or None
            order_state.record_event(db, order, actor, "tracking", previous, order.tracking_number)
        if seller_notes is not None:
            order.seller_notes = seller_notes.strip() or None

    logger.info("Order %s tracking updated by user %s", order.id, actor.user_id)
    return order


def _unique(order_ids: Iterable[int]) -> List[int]:
    seen = set()
    result = []
    for order_id in order_ids:
        if order_id not in seen:
            seen.add(order_id)
            result.append(order_id)
    return result


def bulk_update_status(db: Session, actor: Actor, order_ids: Iterable[int], new_status: str) -> List[BulkOutcome]:
    """Apply ``new_status`` to each order independently.

    Each order is its own unit of work: a refusal on one order is reported
    in its outcome and does not undo the others.
    """
    ids = _unique(order_ids)
    if not ids:
        raise InvalidInputError("Select at least one order")
    if len(ids) > settings.BULK_UPDATE_MAX_ORDERS:
        raise InvalidInputError(f"At most {settings.BULK_UPDATE_MAX_ORDERS} orders can be updated at once")

    outcomes = []
    for order_id in ids:
        try:
            order = update_status(db, actor, order_id, new_status)
        except WorkflowError as exc:
            db.rollback()
            outcomes.append(BulkOutcome(order_id=order_id, ok=False, kind=exc.kind, detail=exc.message))
        else:
            outcomes.append(BulkOutcome(order_id=order_id, ok=True, order=order))

    succeeded = sum(1 for o in outcomes if o.ok)
    logger.info("Bulk status update to %s by user %s: %s/%s succeeded",
                new_status, actor.user_id, succeeded, len(outcomes))
    return outcomes
