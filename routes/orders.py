from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from core.auth import Actor, get_current_actor, require_role, ROLE_SELLER
from core.db import get_db
from schemas.order import (
    BulkStatusUpdate,
    BulkUpdateOut,
    CancellationRequest,
    CheckoutRequest,
    OrderDetailOut,
    OrderOut,
    RefundCompletion,
    RefundDecision,
    ReorderOut,
    StatusUpdate,
    TrackingUpdate,
)
from schemas.reporting import OrderFilters
from services import checkout as checkout_service
from services import fulfillment, order_state, refunds, reporting

router = APIRouter(prefix="/orders", tags=["orders"])


def csv_response(content: bytes, prefix: str) -> Response:
    filename = f"{prefix}-{datetime.utcnow().date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/checkout", response_model=OrderOut, status_code=201)
def checkout(data: CheckoutRequest, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return checkout_service.checkout(db, actor, data.shipping.as_address(), data.promo_code)


@router.get("/", response_model=List[OrderOut])
def list_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(get_current_actor),
                db: Session = Depends(get_db)):
    return reporting.list_orders(db, actor.user_id, filters)


@router.get("/export")
def export_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(get_current_actor),
                  db: Session = Depends(get_db)):
    orders = reporting.list_orders(db, actor.user_id, filters)
    return csv_response(reporting.export_csv(orders), "orders")


@router.post("/bulk-status", response_model=BulkUpdateOut)
def bulk_update_status(data: BulkStatusUpdate, actor: Actor = Depends(require_role(ROLE_SELLER)),
                       db: Session = Depends(get_db)):
    outcomes = fulfillment.bulk_update_status(db, actor, data.order_ids, data.status)
    results = [
        {
            "order_id": o.order_id,
            "ok": o.ok,
            "kind": o.kind,
            "detail": o.detail,
            "status": o.order.status if o.order else None,
            "version": o.order.version if o.order else None,
        }
        for o in outcomes
    ]
    succeeded = sum(1 for o in outcomes if o.ok)
    return {"succeeded": succeeded, "failed": len(outcomes) - succeeded, "results": results}


@router.get("/{order_id}", response_model=OrderDetailOut)
def get_order(order_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    order = order_state.load_order(db, order_id)
    order_state.assert_can_view(db, actor, order)
    return order


@router.post("/{order_id}/cancellation", response_model=OrderOut)
def request_cancellation(order_id: int, data: CancellationRequest, actor: Actor = Depends(get_current_actor),
                         db: Session = Depends(get_db)):
    return refunds.request_cancellation(db, actor, order_id, data.reason, data.expected_version)


@router.post("/{order_id}/reorder", response_model=ReorderOut)
def reorder(order_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return checkout_service.reorder(db, actor, order_id)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(order_id: int, data: StatusUpdate, actor: Actor = Depends(require_role(ROLE_SELLER)),
                  db: Session = Depends(get_db)):
    return fulfillment.update_status(db, actor, order_id, data.status, data.expected_version, note=data.note)


@router.patch("/{order_id}/tracking", response_model=OrderOut)
def update_tracking(order_id: int, data: TrackingUpdate, actor: Actor = Depends(require_role(ROLE_SELLER)),
                    db: Session = Depends(get_db)):
    return fulfillment.update_tracking(db, actor, order_id, data.tracking_number, data.seller_notes,
                                       data.expected_version)


@router.post("/{order_id}/refund", response_model=OrderOut)
def adjudicate_refund(order_id: int, data: RefundDecision, actor: Actor = Depends(require_role(ROLE_SELLER)),
                      db: Session = Depends(get_db)):
    return refunds.adjudicate_refund(db, actor, order_id, data.decision, data.notes, data.expected_version)


@router.post("/{order_id}/refund/complete", response_model=OrderOut)
def complete_refund(order_id: int, data: RefundCompletion, actor: Actor = Depends(require_role(ROLE_SELLER)),
                    db: Session = Depends(get_db)):
    return refunds.complete_refund(db, actor, order_id, data.notes, data.expected_version)
