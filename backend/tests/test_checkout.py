from datetime import timedelta

import pytest

from storefront.errors import (
    ConflictingStateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from storefront.models import (
    Cart,
    Order,
    OrderItem,
    ProductStock,
    StockTransfer,
    StockTransferLog,
    TransactionHistory,
    Warehouse,
)
from storefront.services import order_service
from storefront.time_utils import utcnow

from conftest import JAKARTA, make_checkout_request


def _total_stock(db_session, product):
    db_session.expire_all()
    return sum(row.stock for row in db_session.query(ProductStock).filter_by(product_id=product.id))


class TestCheckout:
    def test_creates_pending_order(
        self, db_session, user, cart, warehouse_a, product_x, product_y, set_stock, stock_of
    ):
        set_stock(product_x, warehouse_a, 10)
        set_stock(product_y, warehouse_a, 10)
        before = utcnow()

        order = order_service.checkout(
            user.id, make_checkout_request(cart, [(product_x, 2), (product_y, 3)])
        )

        db_session.expire_all()
        order = db_session.get(Order, order.id)
        assert order.payment_status == "PENDING"
        assert order.warehouse_id == warehouse_a.id
        assert order.name == f"INV/{before:%Y%m%d}/{order.id:06d}"
        assert before + timedelta(minutes=2) <= order.expire_payment <= utcnow() + timedelta(minutes=2)
        assert order.payment_proof is None

        items = db_session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
        assert [(i.product_id, i.quantity, i.total) for i in items] == [
            (product_x.id, 2, 2 * product_x.price),
            (product_y.id, 3, 3 * product_y.price),
        ]

        assert stock_of(product_x, warehouse_a) == 8
        assert stock_of(product_y, warehouse_a) == 7

        logs = db_session.query(StockTransferLog).filter_by(order_id=order.id).all()
        assert sorted((log.transaction_type, log.quantity) for log in logs) == [("OUT", 2), ("OUT", 3)]

        assert db_session.get(Cart, cart.id).is_active is False

        history = db_session.query(TransactionHistory).filter_by(order_id=order.id).one()
        assert history.type == "PURCHASE"
        assert history.amount == order.total
        assert history.user_id == user.id

    def test_keeps_supplied_invoice_name(self, db_session, user, cart, warehouse_a, product_x, set_stock):
        set_stock(product_x, warehouse_a, 1)
        order = order_service.checkout(
            user.id, make_checkout_request(cart, [(product_x, 1)], name="INV-CUSTOM-1")
        )
        assert order.name == "INV-CUSTOM-1"

    def test_transfers_from_nearest_warehouse(
        self, db_session, user, cart, warehouse_a, warehouse_b, product_x, set_stock, stock_of
    ):
        set_stock(product_x, warehouse_a, 5)
        set_stock(product_x, warehouse_b, 10)

        order = order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 8)]))

        assert stock_of(product_x, warehouse_a) == 0
        assert stock_of(product_x, warehouse_b) == 7
        transfer = db_session.query(StockTransfer).one()
        assert transfer.order_id == order.id
        assert transfer.stock_process == 3

    def test_stock_is_conserved(
        self, db_session, user, cart, warehouse_a, warehouse_b, warehouse_c, product_x, set_stock
    ):
        set_stock(product_x, warehouse_a, 1)
        set_stock(product_x, warehouse_b, 2)
        set_stock(product_x, warehouse_c, 7)
        before = _total_stock(db_session, product_x)

        order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 6)]))

        assert before - _total_stock(db_session, product_x) == 6
        assert all(row.stock >= 0 for row in db_session.query(ProductStock))

    def test_insufficient_stock_leaves_no_trace(
        self, db_session, user, cart, warehouse_a, warehouse_b, product_x, set_stock, stock_of
    ):
        set_stock(product_x, warehouse_a, 5)
        set_stock(product_x, warehouse_b, 2)

        with pytest.raises(InsufficientStockError):
            order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 8)]))

        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(TransactionHistory).count() == 0
        assert db_session.query(StockTransferLog).count() == 0
        assert db_session.get(Cart, cart.id).is_active is True
        assert stock_of(product_x, warehouse_a) == 5
        assert stock_of(product_x, warehouse_b) == 2

    def test_no_warehouse(self, db_session, user, cart, product_x):
        with pytest.raises(NotFoundError, match="No warehouse found"):
            order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 1)]))
        assert db_session.query(Order).count() == 0

    def test_order_uses_nearest_warehouse(
        self, db_session, user, cart, warehouse_a, warehouse_b, warehouse_c, product_x, set_stock, stock_of
    ):
        set_stock(product_x, warehouse_c, 4)

        order = order_service.checkout(
            user.id,
            make_checkout_request(cart, [(product_x, 1)], coordinate=(-7.3, 112.7)),
        )

        assert order.warehouse_id == warehouse_c.id
        assert stock_of(product_x, warehouse_c) == 3
        assert db_session.query(StockTransfer).count() == 0

    def test_inactive_cart(self, db_session, user, cart, warehouse_a, product_x, set_stock):
        set_stock(product_x, warehouse_a, 5)
        cart.is_active = False
        db_session.commit()

        with pytest.raises(ConflictingStateError):
            order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 1)]))

    def test_other_users_cart(self, db_session, other_user, cart, warehouse_a, product_x, set_stock):
        set_stock(product_x, warehouse_a, 5)

        with pytest.raises(NotFoundError):
            order_service.checkout(other_user.id, make_checkout_request(cart, [(product_x, 1)]))

    def test_empty_items(self, db_session, user, cart, warehouse_a):
        with pytest.raises(ValidationError):
            order_service.checkout(user.id, make_checkout_request(cart, [], total=0))

    def test_non_positive_quantity(self, db_session, user, cart, warehouse_a, product_x, set_stock):
        set_stock(product_x, warehouse_a, 5)
        with pytest.raises(ValidationError):
            order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 0)]))
        assert db_session.query(Order).count() == 0

    def test_nearest_warehouse_without_stock(self, db_session, user, cart, product_x):
        db_session.add(Warehouse(name="Far Away", latitude=JAKARTA[0] + 10, longitude=JAKARTA[1]))
        db_session.commit()

        # Nearest warehouse holds nothing and nobody else does either
        with pytest.raises(InsufficientStockError):
            order_service.checkout(user.id, make_checkout_request(cart, [(product_x, 1)]))
