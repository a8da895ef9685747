import pytest
from sqlalchemy.orm import Session

from core.exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from models.order import Order
from models.order_event import OrderEvent
from services import fulfillment, refunds, reporting


@pytest.fixture
def order(buyer, buyer_actor, product_a, place_order):
    return place_order(buyer_actor, buyer, [(product_a, 1)])


@pytest.fixture
def rival_order(buyer, buyer_actor, rival_product, place_order):
    return place_order(buyer_actor, buyer, [(rival_product, 1)])


def _status_history(db, order_id):
    events = (
        db.query(OrderEvent)
        .filter(OrderEvent.order_id == order_id, OrderEvent.field == "status")
        .order_by(OrderEvent.id)
        .all()
    )
    return [e.to_value for e in events]


class TestStatusTransitions:
    """Order status state machine"""

    def test_happy_path(self, db, seller_actor, order):
        for status in ("processing", "shipped", "delivered"):
            order = fulfillment.update_status(db, seller_actor, order.id, status)
            assert order.status == status
        assert _status_history(db, order.id) == ["pending", "processing", "shipped", "delivered"]

    def test_forward_skip_allowed(self, db, seller_actor, order):
        order = fulfillment.update_status(db, seller_actor, order.id, "shipped")
        assert order.status == "shipped"

    def test_backward_move_rejected(self, db, seller_actor, order):
        fulfillment.update_status(db, seller_actor, order.id, "shipped")
        with pytest.raises(InvalidTransitionError):
            fulfillment.update_status(db, seller_actor, order.id, "processing")

    def test_same_status_rejected(self, db, seller_actor, order):
        with pytest.raises(InvalidTransitionError):
            fulfillment.update_status(db, seller_actor, order.id, "pending")

    @pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
    def test_no_way_out_of_terminal_states(self, db, seller_actor, order, terminal):
        fulfillment.update_status(db, seller_actor, order.id, terminal)
        for target in ("pending", "processing", "shipped", "delivered", "cancelled"):
            if target == terminal:
                continue
            with pytest.raises(InvalidTransitionError):
                fulfillment.update_status(db, seller_actor, order.id, target)

    def test_seller_cancel_sets_cancelled_at(self, db, seller_actor, order):
        order = fulfillment.update_status(db, seller_actor, order.id, "cancelled")
        assert order.status == "cancelled"
        assert order.cancelled_at is not None

    def test_unknown_status(self, db, seller_actor, order):
        with pytest.raises(InvalidInputError):
            fulfillment.update_status(db, seller_actor, order.id, "lost")

    def test_unrelated_seller_forbidden(self, db, other_seller_actor, order):
        with pytest.raises(ForbiddenError) as exc_info:
            fulfillment.update_status(db, other_seller_actor, order.id, "processing")
        assert exc_info.value.message == "You don't own this order"
        db.refresh(order)
        assert order.status == "pending"

    def test_buyer_cannot_set_status(self, db, buyer_actor, order):
        with pytest.raises(ForbiddenError):
            fulfillment.update_status(db, buyer_actor, order.id, "processing")

    def test_missing_order(self, db, seller_actor):
        with pytest.raises(OrderNotFoundError):
            fulfillment.update_status(db, seller_actor, 9999, "processing")

    def test_admin_manages_any_order(self, db, admin_actor, rival_order):
        order = fulfillment.update_status(db, admin_actor, rival_order.id, "processing")
        assert order.status == "processing"

    def test_admin_force_reopens_terminal_order(self, db, admin_actor, order):
        fulfillment.update_status(db, admin_actor, order.id, "delivered")
        order = fulfillment.update_status(db, admin_actor, order.id, "shipped", force=True)
        assert order.status == "shipped"

    def test_reopening_cancelled_order_clears_cancelled_at(self, db, admin_actor, order):
        fulfillment.update_status(db, admin_actor, order.id, "cancelled")
        order = fulfillment.update_status(db, admin_actor, order.id, "pending", force=True)
        assert order.status == "pending"
        assert order.cancelled_at is None

    def test_cancel_settles_open_cancellation_request(self, db, buyer_actor, seller_actor, order, sent_emails):
        refunds.request_cancellation(db, buyer_actor, order.id, "Ordered by mistake")
        sent_emails.clear()

        order = fulfillment.update_status(db, seller_actor, order.id, "cancelled")

        assert order.status == "cancelled"
        assert order.refund_status == "approved"
        assert reporting.platform_stats(db)["pending_refunds"] == 0
        assert any("was approved" in e["body"] for e in sent_emails)

    def test_force_is_admin_only(self, db, seller_actor, order):
        with pytest.raises(ForbiddenError):
            fulfillment.update_status(db, seller_actor, order.id, "processing", force=True)

    def test_advance_blocked_while_cancellation_pending(self, db, buyer_actor, seller_actor, order):
        refunds.request_cancellation(db, buyer_actor, order.id, "Ordered by mistake")
        with pytest.raises(ConflictError):
            fulfillment.update_status(db, seller_actor, order.id, "processing")


class TestOptimisticConcurrency:
    """Version checks on order writes"""

    def test_version_increments(self, db, seller_actor, order):
        assert order.version == 1
        order = fulfillment.update_status(db, seller_actor, order.id, "processing")
        assert order.version == 2

    def test_expected_version_mismatch(self, db, seller_actor, order):
        with pytest.raises(ConcurrentUpdateError):
            fulfillment.update_status(db, seller_actor, order.id, "processing", expected_version=7)

    def test_concurrent_write_detected_at_flush(self, db, seller_actor, order):
        # Another session commits a change after this one loaded the order
        other = Session(bind=db.get_bind())
        other.get(Order, order.id).status = "processing"
        other.commit()
        other.close()

        with pytest.raises(ConcurrentUpdateError):
            fulfillment.update_status(db, seller_actor, order.id, "shipped")

        db.expire_all()
        stored = db.get(Order, order.id)
        assert stored.status == "processing"
        assert stored.version == 2


class TestTracking:
    """Tracking number and seller notes"""

    def test_update_tracking(self, db, seller_actor, order):
        order = fulfillment.update_tracking(db, seller_actor, order.id, "1Z999AA10123456784", "Ships Monday")
        assert order.tracking_number == "1Z999AA10123456784"
        assert order.seller_notes == "Ships Monday"

    def test_tracking_allowed_after_delivery(self, db, seller_actor, order):
        fulfillment.update_status(db, seller_actor, order.id, "delivered")
        order = fulfillment.update_tracking(db, seller_actor, order.id, "TRACK-1")
        assert order.tracking_number == "TRACK-1"

    def test_tracking_requires_something(self, db, seller_actor, order):
        with pytest.raises(InvalidInputError):
            fulfillment.update_tracking(db, seller_actor, order.id, None, None)

    def test_unrelated_seller_forbidden(self, db, other_seller_actor, order):
        with pytest.raises(ForbiddenError):
            fulfillment.update_tracking(db, other_seller_actor, order.id, "TRACK-1")


class TestBulkUpdate:
    """Per-order outcomes for bulk status updates"""

    def test_partial_success(self, db, buyer, buyer_actor, seller_actor, product_a, rival_product, place_order):
        own = [place_order(buyer_actor, buyer, [(product_a, 1)]) for _ in range(4)]
        foreign = place_order(buyer_actor, buyer, [(rival_product, 1)])
        ids = [o.id for o in own[:2]] + [foreign.id] + [o.id for o in own[2:]]

        outcomes = fulfillment.bulk_update_status(db, seller_actor, ids, "shipped")

        assert [o.order_id for o in outcomes] == ids
        assert [o.ok for o in outcomes] == [True, True, False, True, True]
        assert outcomes[2].kind == "forbidden"
        db.expire_all()
        assert {db.get(Order, o.id).status for o in own} == {"shipped"}
        assert db.get(Order, foreign.id).status == "pending"

    def test_mixed_failures_reported(self, db, seller_actor, order):
        fulfillment.update_status(db, seller_actor, order.id, "delivered")
        outcomes = fulfillment.bulk_update_status(db, seller_actor, [order.id, 424242], "shipped")
        assert [(o.ok, o.kind) for o in outcomes] == [(False, "conflict"), (False, "not_found")]

    def test_duplicate_ids_processed_once(self, db, seller_actor, order):
        outcomes = fulfillment.bulk_update_status(db, seller_actor, [order.id, order.id], "processing")
        assert len(outcomes) == 1
        assert outcomes[0].ok is True

    def test_empty_selection(self, db, seller_actor):
        with pytest.raises(InvalidInputError):
            fulfillment.bulk_update_status(db, seller_actor, [], "shipped")


class TestFulfillmentRoutes:
    """Seller-facing order mutation endpoints"""

    def test_update_status_endpoint(self, client, seller_headers, order):
        response = client.patch(f"/orders/{order.id}/status", json={"status": "processing", "expected_version": 1},
                                headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        assert response.json()["version"] == 2

    def test_stale_version_conflict(self, client, seller_headers, order):
        response = client.patch(f"/orders/{order.id}/status", json={"status": "processing", "expected_version": 5},
                                headers=seller_headers)
        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    def test_unrelated_seller_gets_403(self, client, other_seller_headers, order):
        response = client.patch(f"/orders/{order.id}/status", json={"status": "processing"},
                                headers=other_seller_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "You don't own this order"

    def test_buyer_without_store_gets_403(self, client, buyer_headers, order):
        response = client.patch(f"/orders/{order.id}/status", json={"status": "processing"},
                                headers=buyer_headers)
        assert response.status_code == 403

    def test_tracking_endpoint(self, client, seller_headers, order, sent_emails):
        response = client.patch(f"/orders/{order.id}/tracking",
                                json={"tracking_number": "TRACK-9", "seller_notes": "Fragile"},
                                headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["tracking_number"] == "TRACK-9"

    def test_bulk_endpoint(self, client, buyer, buyer_actor, seller_headers, product_a, rival_product, place_order):
        ids = [place_order(buyer_actor, buyer, [(product_a, 1)]).id for _ in range(4)]
        ids.insert(1, place_order(buyer_actor, buyer, [(rival_product, 1)]).id)

        response = client.post("/orders/bulk-status", json={"order_ids": ids, "status": "shipped"},
                               headers=seller_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 4
        assert data["failed"] == 1
        failed = [r for r in data["results"] if not r["ok"]]
        assert failed == [{"order_id": ids[1], "ok": False, "kind": "forbidden",
                           "detail": "You don't own this order", "status": None, "version": None}]

    def test_admin_force_endpoint(self, client, admin_headers, seller_headers, order):
        client.patch(f"/orders/{order.id}/status", json={"status": "delivered"}, headers=seller_headers)
        response = client.patch(f"/admin/orders/{order.id}/status", json={"status": "shipped", "force": True},
                                headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "shipped"

    def test_status_change_emails_buyer(self, client, seller_headers, order, sent_emails, buyer):
        sent_emails.clear()
        client.patch(f"/orders/{order.id}/status", json={"status": "shipped"}, headers=seller_headers)
        assert len(sent_emails) == 1
        assert sent_emails[0]["to"] == buyer.email
        assert "is now shipped" in sent_emails[0]["body"]
