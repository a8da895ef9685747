import pytest

from core.exceptions import (
    AlreadyRequestedError,
    ForbiddenError,
    InvalidInputError,
    InvalidRefundStateError,
    NotPendingError,
)
from models.order_event import OrderEvent
from services import fulfillment, refunds


@pytest.fixture
def order(buyer, buyer_actor, product_a, place_order):
    return place_order(buyer_actor, buyer, [(product_a, 2)])


@pytest.fixture
def requested(db, buyer_actor, order):
    return refunds.request_cancellation(db, buyer_actor, order.id, "Found it cheaper elsewhere")


class TestCancellationRequest:
    """Buyer cancellation requests"""

    def test_request_keeps_status(self, db, buyer_actor, order):
        order = refunds.request_cancellation(db, buyer_actor, order.id, "  Changed my mind  ")
        assert order.status == "pending"
        assert order.refund_status == "requested"
        assert order.cancellation_reason == "Changed my mind"

    def test_reason_required(self, db, buyer_actor, order):
        with pytest.raises(InvalidInputError):
            refunds.request_cancellation(db, buyer_actor, order.id, "   ")
        db.refresh(order)
        assert order.refund_status == "none"

    def test_reason_too_long(self, db, buyer_actor, order):
        with pytest.raises(InvalidInputError):
            refunds.request_cancellation(db, buyer_actor, order.id, "x" * 501)

    def test_only_own_orders(self, db, other_buyer_actor, order):
        with pytest.raises(ForbiddenError) as exc_info:
            refunds.request_cancellation(db, other_buyer_actor, order.id, "Not mine")
        assert exc_info.value.message == "You can only cancel your own orders"

    def test_only_pending_orders(self, db, buyer_actor, seller_actor, order):
        fulfillment.update_status(db, seller_actor, order.id, "processing")
        with pytest.raises(NotPendingError):
            refunds.request_cancellation(db, buyer_actor, order.id, "Too slow")

    def test_single_request(self, db, buyer_actor, requested):
        with pytest.raises(AlreadyRequestedError):
            refunds.request_cancellation(db, buyer_actor, requested.id, "Again")

    def test_no_second_request_after_rejection(self, db, buyer_actor, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "Already packed")
        with pytest.raises(AlreadyRequestedError):
            refunds.request_cancellation(db, buyer_actor, requested.id, "Please")


class TestRefundAdjudication:
    """Seller and admin decisions on cancellation requests"""

    def test_approve_cancels_order(self, db, seller_actor, requested):
        order = refunds.adjudicate_refund(db, seller_actor, requested.id, "approve")
        assert order.refund_status == "approved"
        assert order.status == "cancelled"
        assert order.cancelled_at is not None
        assert order.seller_notes == "Refund approved"

    def test_approve_records_both_events(self, db, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "approve", "Sorry to see you go")
        events = (
            db.query(OrderEvent)
            .filter(OrderEvent.order_id == requested.id)
            .order_by(OrderEvent.id)
            .all()
        )
        assert [(e.field, e.to_value) for e in events] == [
            ("status", "pending"),
            ("refund_status", "requested"),
            ("refund_status", "approved"),
            ("status", "cancelled"),
        ]

    def test_reject_requires_notes(self, db, seller_actor, requested):
        with pytest.raises(InvalidInputError):
            refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "  ")
        db.refresh(requested)
        assert requested.refund_status == "requested"

    def test_reject_leaves_status(self, db, seller_actor, requested):
        order = refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "Already shipped out")
        assert order.refund_status == "rejected"
        assert order.status == "pending"
        assert order.seller_notes == "Already shipped out"

    def test_fulfillment_resumes_after_rejection(self, db, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "Already packed")
        order = fulfillment.update_status(db, seller_actor, requested.id, "processing")
        assert order.status == "processing"

    def test_decision_needs_a_request(self, db, seller_actor, order):
        with pytest.raises(InvalidRefundStateError):
            refunds.adjudicate_refund(db, seller_actor, order.id, "approve")

    def test_rejected_cannot_be_approved(self, db, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "No")
        with pytest.raises(InvalidRefundStateError):
            refunds.adjudicate_refund(db, seller_actor, requested.id, "approve")

    def test_unrelated_seller_forbidden(self, db, other_seller_actor, requested):
        with pytest.raises(ForbiddenError):
            refunds.adjudicate_refund(db, other_seller_actor, requested.id, "approve")

    def test_buyer_cannot_adjudicate(self, db, buyer_actor, requested):
        with pytest.raises(ForbiddenError):
            refunds.adjudicate_refund(db, buyer_actor, requested.id, "approve")

    def test_admin_can_adjudicate(self, db, admin_actor, requested):
        order = refunds.adjudicate_refund(db, admin_actor, requested.id, "approve")
        assert order.status == "cancelled"

    def test_unknown_decision(self, db, seller_actor, requested):
        with pytest.raises(InvalidInputError):
            refunds.adjudicate_refund(db, seller_actor, requested.id, "maybe")

    def test_buyer_is_notified(self, db, buyer, seller_actor, requested, sent_emails):
        sent_emails.clear()
        refunds.adjudicate_refund(db, seller_actor, requested.id, "approve")
        assert {e["to"] for e in sent_emails} == {buyer.email}
        assert any("was approved" in e["body"] for e in sent_emails)


class TestRefundCompletion:
    """Marking approved refunds as paid out"""

    def test_complete_after_approval(self, db, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "approve")
        order = refunds.complete_refund(db, seller_actor, requested.id)
        assert order.refund_status == "completed"
        assert order.status == "cancelled"

    def test_complete_before_approval(self, db, seller_actor, requested):
        with pytest.raises(InvalidRefundStateError):
            refunds.complete_refund(db, seller_actor, requested.id)

    def test_completed_is_final(self, db, buyer_actor, seller_actor, requested):
        refunds.adjudicate_refund(db, seller_actor, requested.id, "approve")
        refunds.complete_refund(db, seller_actor, requested.id)
        with pytest.raises(InvalidRefundStateError):
            refunds.adjudicate_refund(db, seller_actor, requested.id, "reject", "Too late")
        with pytest.raises(InvalidRefundStateError):
            refunds.complete_refund(db, seller_actor, requested.id)


class TestRefundRoutes:
    """Cancellation and refund endpoints"""

    def test_full_flow(self, client, buyer_headers, seller_headers, order):
        response = client.post(f"/orders/{order.id}/cancellation",
                               json={"reason": "Ordered the wrong size", "expected_version": 1},
                               headers=buyer_headers)
        assert response.status_code == 200
        assert response.json()["refund_status"] == "requested"
        version = response.json()["version"]

        response = client.post(f"/orders/{order.id}/refund",
                               json={"decision": "approve", "expected_version": version},
                               headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = client.post(f"/orders/{order.id}/refund/complete", json={}, headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["refund_status"] == "completed"

    def test_other_buyer_gets_403(self, client, other_buyer_headers, order):
        response = client.post(f"/orders/{order.id}/cancellation", json={"reason": "Mine now"},
                               headers=other_buyer_headers)
        assert response.status_code == 403
        assert response.json()["kind"] == "forbidden"

    def test_not_pending_is_conflict(self, client, buyer_headers, seller_headers, order):
        client.patch(f"/orders/{order.id}/status", json={"status": "shipped"}, headers=seller_headers)
        response = client.post(f"/orders/{order.id}/cancellation", json={"reason": "Too slow"},
                               headers=buyer_headers)
        assert response.status_code == 409

    def test_reject_without_notes(self, client, seller_headers, requested):
        response = client.post(f"/orders/{requested.id}/refund", json={"decision": "reject"},
                               headers=seller_headers)
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    def test_empty_reason_rejected(self, client, buyer_headers, order):
        response = client.post(f"/orders/{order.id}/cancellation", json={"reason": ""}, headers=buyer_headers)
        assert response.status_code == 422
