import logging

import pytest

from storefront.errors import ConflictingStateError, NotFoundError, ValidationError
from storefront.models import Cart, Order, StockTransferLog, TransactionHistory
from storefront.services import order_service

from conftest import make_checkout_request


@pytest.fixture
def pending_order(db_session, user, cart, warehouse_a, product_x, product_y, set_stock):
    set_stock(product_x, warehouse_a, 10)
    set_stock(product_y, warehouse_a, 10)
    order = order_service.checkout(
        user.id, make_checkout_request(cart, [(product_x, 2), (product_y, 1)])
    )
    return order


def _refunds(db_session, order_id):
    return db_session.query(TransactionHistory).filter_by(order_id=order_id, type="REFUND").all()


class TestCancelOrder:
    def test_cancel_reverses_checkout(
        self, db_session, user, cart, warehouse_a, product_x, product_y, pending_order, stock_of
    ):
        order = order_service.cancel_order(user.id, pending_order.id)

        assert order.payment_status == "CANCELED"
        assert order.cancellation_source == "USER"
        assert order.cancelled_at is not None

        assert stock_of(product_x, warehouse_a) == 10
        assert stock_of(product_y, warehouse_a) == 10
        assert db_session.get(Cart, cart.id).is_active is True

        in_logs = db_session.query(StockTransferLog).filter_by(
            order_id=order.id, transaction_type="IN"
        ).all()
        assert sorted(log.quantity for log in in_logs) == [1, 2]
        assert all("cancellation" in log.description for log in in_logs)

        refunds = _refunds(db_session, order.id)
        assert len(refunds) == 1
        assert refunds[0].amount == order.total
        assert refunds[0].user_id == user.id

    def test_admin_source_is_recorded(self, db_session, user, pending_order):
        order = order_service.cancel_order(user.id, pending_order.id, source="ADMIN")
        assert order.cancellation_source == "ADMIN"

    def test_transferred_stock_returns_to_fulfilling_warehouse(
        self, db_session, user, cart, warehouse_a, warehouse_b, product_x, set_stock, stock_of
    ):
        set_stock(product_x, warehouse_a, 5)
        set_stock(product_x, warehouse_b, 10)
        order = order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 8)]))

        order_service.cancel_order(user.id, order.id)

        # The 3 units moved from B stay at A
        assert stock_of(product_x, warehouse_a) == 8
        assert stock_of(product_x, warehouse_b) == 7

    def test_cannot_cancel_twice(self, db_session, user, pending_order, warehouse_a, product_x, stock_of):
        order_service.cancel_order(user.id, pending_order.id)

        with pytest.raises(ConflictingStateError):
            order_service.cancel_order(user.id, pending_order.id)

        assert len(_refunds(db_session, pending_order.id)) == 1
        assert stock_of(product_x, warehouse_a) == 10

    def test_cannot_cancel_paid_order(
        self, db_session, user, cart, pending_order, warehouse_a, product_x, stock_of
    ):
        order_service.upload_payment_proof(user.id, pending_order.id, "proof.png")

        with pytest.raises(ConflictingStateError):
            order_service.cancel_order(user.id, pending_order.id)

        db_session.expire_all()
        assert db_session.get(Order, pending_order.id).payment_status == "PAID"
        assert stock_of(product_x, warehouse_a) == 8
        assert db_session.get(Cart, cart.id).is_active is False
        assert _refunds(db_session, pending_order.id) == []

    def test_cannot_cancel_other_users_order(self, db_session, other_user, pending_order):
        with pytest.raises(NotFoundError):
            order_service.cancel_order(other_user.id, pending_order.id)

        db_session.expire_all()
        assert db_session.get(Order, pending_order.id).payment_status == "PENDING"

    def test_unknown_order(self, db_session, user):
        with pytest.raises(NotFoundError):
            order_service.cancel_order(user.id, 12345)

    def test_unknown_source(self, db_session, user, pending_order):
        with pytest.raises(ValidationError):
            order_service.cancel_order(user.id, pending_order.id, source="ROBOT")

    def test_reactivation_keeps_single_active_cart(self, db_session, user, cart, pending_order):
        newer = Cart(user_id=user.id, is_active=True)
        db_session.add(newer)
        db_session.commit()

        order_service.cancel_order(user.id, pending_order.id)

        db_session.expire_all()
        active = db_session.query(Cart).filter_by(user_id=user.id, is_active=True).all()
        assert [c.id for c in active] == [cart.id]

    def test_reactivation_logs_deactivated_carts(self, db_session, user, cart, pending_order, caplog):
        newer = Cart(user_id=user.id, is_active=True)
        db_session.add(newer)
        db_session.commit()
        newer_id = newer.id

        with caplog.at_level(logging.INFO, logger="storefront"):
            order_service.cancel_order(user.id, pending_order.id)

        messages = [record.getMessage() for record in caplog.records]
        assert f"Deactivated cart(s) [{newer_id}] of user {user.id} to reactivate cart {cart.id}" in messages
