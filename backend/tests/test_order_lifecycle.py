"""
Order lifecycle tests.

Verifies:
- Transition tables: terminal states, cancellation reachability, the
  delivery/counter fork at ready
- Invalid transitions leave the order untouched
- Valid transitions touch only status and that status's timestamp
- Stock moves at creation and on cancellation only
- Courier assignment and delivery-fee adjustment preconditions
- Events are published after commit, with the documented payloads
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from adega.extensions import db
from adega.models import Order, StockLog, ORDER_STATUSES
from adega.services import order_lifecycle_service as lifecycle
from adega.services.concurrency import PersistenceFailure
from adega.services.order_lifecycle_service import (
    InvalidTransition,
    OrderNotFound,
    PreconditionFailed,
    STATUS_TIMESTAMP_FIELDS,
    TRANSITIONS,
)
from adega.time_utils import utcnow
from adega.validation import NotFoundError, ValidationError
from conftest import counter_payload, delivery_payload


def _camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)


def _bare_order(db_session, order_type: str, status: str) -> Order:
    order = Order(
        order_type=order_type,
        status=status,
        subtotal=Decimal("10.00"),
        delivery_fee=Decimal("0.00"),
        discount=Decimal("0.00"),
        total=Decimal("10.00"),
        payment_method="cash",
        created_at=utcnow(),
    )
    db_session.add(order)
    db_session.commit()
    return order


ALL_PAIRS = [
    (order_type, status)
    for order_type, table in TRANSITIONS.items()
    for status in table
]

OPEN_PAIRS = [
    (order_type, status)
    for order_type, status in ALL_PAIRS
    if status not in ("delivered", "cancelled")
]

VALID_MOVES = [
    (order_type, status, target)
    for order_type, table in TRANSITIONS.items()
    for status, targets in table.items()
    for target in sorted(targets)
]


# =============================================================================
# TRANSITION TABLE
# =============================================================================


class TestTransitionTable:

    @pytest.mark.parametrize("order_type", ["delivery", "counter"])
    def test_terminal_states(self, order_type):
        assert TRANSITIONS[order_type]["delivered"] == frozenset()
        assert TRANSITIONS[order_type]["cancelled"] == frozenset()

    @pytest.mark.parametrize("order_type,status", OPEN_PAIRS)
    def test_every_open_status_can_cancel(self, order_type, status):
        assert "cancelled" in TRANSITIONS[order_type][status]

    def test_fork_at_ready(self):
        assert TRANSITIONS["delivery"]["ready"] == {"dispatched", "cancelled"}
        assert TRANSITIONS["counter"]["ready"] == {"delivered", "cancelled"}

    def test_counter_never_uses_courier_states(self):
        counter = TRANSITIONS["counter"]
        assert "dispatched" not in counter
        assert "arrived" not in counter
        assert all("dispatched" not in nxt and "arrived" not in nxt for nxt in counter.values())

    def test_every_status_has_one_timestamp_field(self):
        assert set(STATUS_TIMESTAMP_FIELDS) == set(ORDER_STATUSES)
        assert len(set(STATUS_TIMESTAMP_FIELDS.values())) == len(ORDER_STATUSES)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            TRANSITIONS["delivery"]["pending"] = frozenset({"delivered"})

    def test_allowed_transitions_sorted(self):
        assert lifecycle.allowed_transitions("delivery", "dispatched") == [
            "arrived", "cancelled", "delivered",
        ]
        assert lifecycle.can_transition("counter", "ready", "delivered")
        assert not lifecycle.can_transition("counter", "ready", "dispatched")


# =============================================================================
# REQUEST TRANSITION (service)
# =============================================================================


class TestRequestTransition:

    @pytest.mark.parametrize("order_type,status", ALL_PAIRS)
    def test_invalid_targets_rejected_and_order_unchanged(self, db_session, broadcaster, order_type, status):
        order = _bare_order(db_session, order_type, status)
        before = order.to_dict()
        allowed = TRANSITIONS[order_type][status]

        for target in ORDER_STATUSES:
            if target in allowed:
                continue
            with pytest.raises(InvalidTransition) as excinfo:
                lifecycle.request_transition(order.id, target, broadcaster=broadcaster)
            assert excinfo.value.current_status == status
            assert excinfo.value.allowed_transitions == sorted(allowed)

        db_session.expire_all()
        assert db_session.get(Order, order.id).to_dict() == before
        assert broadcaster.published == []

    def test_unknown_status_string_rejected(self, db_session, broadcaster):
        order = _bare_order(db_session, "delivery", "pending")
        with pytest.raises(InvalidTransition):
            lifecycle.request_transition(order.id, "teleported", broadcaster=broadcaster)

    @pytest.mark.parametrize("order_type,status,target", VALID_MOVES)
    def test_valid_move_touches_status_and_timestamp_only(self, db_session, broadcaster, order_type, status, target):
        order = _bare_order(db_session, order_type, status)
        before = order.to_dict()

        lifecycle.request_transition(order.id, target, broadcaster=broadcaster)

        db_session.expire_all()
        after = db_session.get(Order, order.id).to_dict()
        changed = {key for key in after if after[key] != before[key]}
        assert changed == {"status", _camel(STATUS_TIMESTAMP_FIELDS[target])}
        assert after["status"] == target

        assert broadcaster.published == [(
            "order_status_changed",
            {"orderId": order.id, "previousStatus": status, "status": target},
        )]

    def test_unknown_order(self, db_session, broadcaster):
        with pytest.raises(OrderNotFound):
            lifecycle.request_transition("missing", "accepted", broadcaster=broadcaster)

    def test_persistence_failure_rolls_back_and_publishes_nothing(
        self, db_session, broadcaster, make_product, customer, address, client, monkeypatch
    ):
        product = make_product(stock=10)
        resp = client.post("/api/orders", json=delivery_payload(customer, address, [(product, 3)]))
        order_id = resp.json["id"]
        broadcaster.reset()

        def _boom():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session(), "commit", _boom)
        monkeypatch.setattr("adega.services.concurrency.time.sleep", lambda _s: None)

        with pytest.raises(PersistenceFailure):
            lifecycle.request_transition(order_id, "cancelled", broadcaster=broadcaster)
        monkeypatch.undo()

        db_session.expire_all()
        assert db_session.get(Order, order_id).status == "pending"
        assert db_session.get(type(product), product.id).stock == 7
        assert broadcaster.published == []


# =============================================================================
# STOCK EFFECTS (end to end through the API)
# =============================================================================


class TestStockEffects:

    def test_full_delivery_run(self, client, db_session, broadcaster, make_product, customer, address, courier):
        product = make_product(stock=10)

        resp = client.post("/api/orders", json=delivery_payload(customer, address, [(product, 3)]))
        assert resp.status_code == 201
        order_id = resp.json["id"]

        db_session.expire_all()
        assert db_session.get(type(product), product.id).stock == 7
        logs = db_session.query(StockLog).all()
        assert len(logs) == 1
        assert (logs[0].previous_stock, logs[0].new_stock, logs[0].change) == (10, 7, -3)
        assert logs[0].reason == f"order {order_id}"

        for status in ("accepted", "preparing", "ready"):
            resp = client.patch(f"/api/orders/{order_id}/status", json={"status": status})
            assert resp.status_code == 200, resp.json
            assert resp.json["status"] == status

        resp = client.patch(f"/api/orders/{order_id}/assign", json={"motoboyId": courier.id})
        assert resp.status_code == 200
        assert resp.json["status"] == "dispatched"
        assert resp.json["motoboyId"] == courier.id
        assert resp.json["dispatchedAt"] is not None

        for status in ("arrived", "delivered"):
            resp = client.patch(f"/api/orders/{order_id}/status", json={"status": status})
            assert resp.status_code == 200
            assert resp.json["status"] == status

        db_session.expire_all()
        assert db_session.get(type(product), product.id).stock == 7
        assert db_session.query(StockLog).count() == 1

        assert broadcaster.events() == [
            "order_created",
            "order_status_changed",
            "order_status_changed",
            "order_status_changed",
            "order_assigned",
            "order_status_changed",
            "order_status_changed",
            "order_status_changed",
        ]

    def test_cancel_restores_stock(self, client, db_session, make_product, customer, address):
        product = make_product(stock=10)
        order_id = client.post(
            "/api/orders", json=delivery_payload(customer, address, [(product, 3)])
        ).json["id"]

        for status in ("accepted", "preparing", "cancelled"):
            resp = client.patch(f"/api/orders/{order_id}/status", json={"status": status})
            assert resp.status_code == 200

        db_session.expire_all()
        assert db_session.get(type(product), product.id).stock == 10
        restore = db_session.query(StockLog).filter(StockLog.change > 0).one()
        assert restore.change == 3
        assert restore.reason == f"order cancellation {order_id}"
        assert order_id in restore.reason

        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "accepted"})
        assert resp.status_code == 400
        assert resp.json["currentStatus"] == "cancelled"
        assert resp.json["allowedTransitions"] == []

    def test_round_trip_with_clamp(self, client, db_session, make_product):
        # S=2, N=5: creation floors at 0, cancellation adds back N
        product = make_product(stock=2)
        order_id = client.post("/api/orders", json=counter_payload([(product, 5)])).json["id"]

        db_session.expire_all()
        assert db_session.get(type(product), product.id).stock == 0

        client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})
        db_session.expire_all()
        assert db_session.get(type(product), product.id).stock == 5

    def test_exempt_products_never_logged(self, client, db_session, make_product, beers, caipirinhas):
        caipi = make_product("Caipirinha", category=caipirinhas, stock=0)
        chopp = make_product("Chopp", category=beers, stock=0, is_prepared=True)

        order_id = client.post(
            "/api/orders", json=counter_payload([(caipi, 2), (chopp, 1)])
        ).json["id"]
        client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})

        assert db_session.query(StockLog).count() == 0

    def test_multiple_lines_restore_each_product(self, client, db_session, make_product, beers):
        a = make_product("Brahma", category=beers, stock=10)
        b = make_product("Skol", category=beers, stock=10)
        order_id = client.post("/api/orders", json=counter_payload([(a, 2), (b, 4)])).json["id"]

        client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})

        restores = db_session.query(StockLog).filter(StockLog.change > 0).all()
        assert sorted((log.product_id, log.change) for log in restores) == sorted([(a.id, 2), (b.id, 4)])


# =============================================================================
# COURIER ASSIGNMENT
# =============================================================================


class TestAssignCourier:

    def test_counter_order_rejected(self, client, db_session, make_product, courier):
        product = make_product()
        order_id = client.post(
            "/api/orders", json=counter_payload([(product, 1)], status="ready")
        ).json["id"]

        resp = client.patch(f"/api/orders/{order_id}/assign", json={"motoboyId": courier.id})

        assert resp.status_code == 400
        assert "delivery" in resp.json["error"]
        assert client.get(f"/api/orders/{order_id}").json["status"] == "ready"

    @pytest.mark.parametrize("status", ["pending", "accepted", "preparing", "delivered", "cancelled"])
    def test_non_ready_delivery_rejected(self, db_session, broadcaster, courier, status):
        order = _bare_order(db_session, "delivery", status)
        with pytest.raises(PreconditionFailed) as excinfo:
            lifecycle.assign_courier(order.id, courier.id, broadcaster=broadcaster)
        assert excinfo.value.details["currentStatus"] == status
        assert broadcaster.published == []

    def test_unknown_courier(self, db_session, broadcaster):
        order = _bare_order(db_session, "delivery", "ready")
        with pytest.raises(NotFoundError):
            lifecycle.assign_courier(order.id, "missing", broadcaster=broadcaster)

    def test_inactive_courier(self, db_session, broadcaster, make_courier):
        courier = make_courier(is_active=False)
        order = _bare_order(db_session, "delivery", "ready")
        with pytest.raises(PreconditionFailed):
            lifecycle.assign_courier(order.id, courier.id, broadcaster=broadcaster)

    def test_publishes_assignment_then_status(self, db_session, broadcaster, courier):
        order = _bare_order(db_session, "delivery", "ready")
        lifecycle.assign_courier(order.id, courier.id, broadcaster=broadcaster)
        assert broadcaster.published == [
            ("order_assigned", {"orderId": order.id, "motoboyId": courier.id, "status": "dispatched"}),
            ("order_status_changed", {"orderId": order.id, "previousStatus": "ready", "status": "dispatched"}),
        ]


# =============================================================================
# DELIVERY FEE
# =============================================================================


class TestDeliveryFee:

    def test_adjust_after_delivered_keeps_first_original(self, client, db_session, make_product, customer, address, courier):
        product = make_product(stock=10, sale_price="12.00")
        order = client.post(
            "/api/orders",
            json=delivery_payload(customer, address, [(product, 3)], deliveryFee=5, discount=2),
        ).json
        assert order["total"] == "39.00"

        order_id = order["id"]
        for status in ("accepted", "preparing", "ready"):
            client.patch(f"/api/orders/{order_id}/status", json={"status": status})
        client.patch(f"/api/orders/{order_id}/assign", json={"motoboyId": courier.id})
        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"})
        assert resp.json["status"] == "delivered"

        resp = client.patch(f"/api/orders/{order_id}/delivery-fee", json={"deliveryFee": 8})
        assert resp.status_code == 200
        assert resp.json["deliveryFee"] == "8.00"
        assert resp.json["originalDeliveryFee"] == "5.00"
        assert resp.json["total"] == "42.00"
        assert resp.json["deliveryFeeAdjusted"] is True
        assert resp.json["deliveryFeeAdjustedAt"] is not None

        resp = client.patch(f"/api/orders/{order_id}/delivery-fee", json={"deliveryFee": "3.50"})
        assert resp.status_code == 200
        assert resp.json["deliveryFee"] == "3.50"
        assert resp.json["originalDeliveryFee"] == "5.00"
        assert resp.json["total"] == "37.50"
        assert resp.json["status"] == "delivered"

    def test_fee_event_payload(self, db_session, broadcaster):
        order = _bare_order(db_session, "delivery", "cancelled")
        lifecycle.adjust_delivery_fee(order.id, 7, broadcaster=broadcaster)

        ((event, payload),) = broadcaster.published
        assert event == "order_fee_updated"
        assert payload["orderId"] == order.id
        assert payload["originalFee"] == Decimal("0.00")
        assert payload["newFee"] == Decimal("7.00")
        assert payload["newTotal"] == Decimal("17.00")

    def test_rejects_fee_that_makes_total_negative(self, db_session, broadcaster):
        order = _bare_order(db_session, "counter", "delivered")
        order.discount = Decimal("12.00")
        order.delivery_fee = Decimal("5.00")
        order.total = Decimal("3.00")
        db_session.commit()

        with pytest.raises(ValidationError):
            lifecycle.adjust_delivery_fee(order.id, 0, broadcaster=broadcaster)

        db_session.expire_all()
        unchanged = db_session.get(Order, order.id)
        assert unchanged.total == Decimal("3.00")
        assert unchanged.delivery_fee == Decimal("5.00")
        assert unchanged.original_delivery_fee is None
        assert broadcaster.published == []

    @pytest.mark.parametrize("fee", [-1, "abc", None, True])
    def test_rejects_bad_fee(self, db_session, broadcaster, fee):
        order = _bare_order(db_session, "delivery", "pending")
        with pytest.raises(ValidationError):
            lifecycle.adjust_delivery_fee(order.id, fee, broadcaster=broadcaster)
