import threading
from decimal import Decimal

import pytest
from sqlalchemy import func

from storefront import crud, fulfillment
from storefront.database import SessionLocal
from storefront.errors import CartChanged, EmptyCart, InsufficientStock
from storefront.fulfillment import place_order
from storefront.models import CartItem, Order, OrderItem, Product


def _cart(db, user_id):
    return {i.product_id: i.quantity for i in db.query(CartItem).filter(CartItem.user_id == user_id)}


def _stock(db, product_id):
    db.expire_all()
    return db.query(Product.quantity).filter(Product.id == product_id).scalar()


class TestPlaceOrder:
    def test_two_line_cart(self, db, make_user, make_product):
        user = make_user()
        a = make_product("A", price="10.00", quantity=5)
        b = make_product("B", price="5.00", quantity=5)
        crud.insert_cart_item(db, user.id, a.id, 2)
        crud.insert_cart_item(db, user.id, b.id, 1)

        order = place_order(db, user.id)

        assert order.total_amount == Decimal("25.00")
        assert order.status == "PLACED"
        assert order.created_at is not None
        assert [(i.product_id, i.quantity, i.price) for i in order.items] == [
            (a.id, 2, Decimal("10.00")),
            (b.id, 1, Decimal("5.00")),
        ]
        assert [i.product_name for i in order.items] == ["A", "B"]
        assert _cart(db, user.id) == {}
        assert _stock(db, a.id) == 3
        assert _stock(db, b.id) == 4

    def test_insufficient_stock_leaves_cart_alone(self, db, make_user, make_product):
        user = make_user()
        a = make_product("A", price="10.00", quantity=3)
        # The cart only soft-checks stock, so a line like this can exist.
        crud.insert_cart_item(db, user.id, a.id, 10)

        with pytest.raises(InsufficientStock) as exc_info:
            place_order(db, user.id)

        assert exc_info.value.product_id == a.id
        assert exc_info.value.requested == 10
        assert exc_info.value.available == 3
        assert _cart(db, user.id) == {a.id: 10}
        assert db.query(Order).count() == 0
        assert _stock(db, a.id) == 3

    def test_empty_cart(self, db, make_user):
        user = make_user()

        with pytest.raises(EmptyCart):
            place_order(db, user.id)

        assert db.query(Order).count() == 0

    def test_one_bad_line_fails_whole_order(self, db, make_user, make_product):
        user = make_user()
        a = make_product("A", price="10.00", quantity=5)
        b = make_product("B", price="5.00", quantity=1)
        crud.insert_cart_item(db, user.id, a.id, 2)
        crud.insert_cart_item(db, user.id, b.id, 2)

        with pytest.raises(InsufficientStock) as exc_info:
            place_order(db, user.id)

        assert exc_info.value.product_id == b.id
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0
        assert _cart(db, user.id) == {a.id: 2, b.id: 2}
        assert _stock(db, a.id) == 5
        assert _stock(db, b.id) == 1

    def test_failure_after_decrement_rolls_everything_back(self, db, make_user, make_product, monkeypatch):
        user = make_user()
        a = make_product("A", price="10.00", quantity=5)
        crud.insert_cart_item(db, user.id, a.id, 2)

        def broken_order_item(**kwargs):
            raise RuntimeError("connection dropped")

        monkeypatch.setattr(fulfillment, "OrderItem", broken_order_item)

        with pytest.raises(RuntimeError):
            place_order(db, user.id)

        assert db.query(Order).count() == 0
        assert _cart(db, user.id) == {a.id: 2}
        assert _stock(db, a.id) == 5

    def test_stock_sold_between_validation_and_commit(self, db, make_user, make_product, monkeypatch):
        user = make_user()
        a = make_product("A", price="10.00", quantity=2)
        crud.insert_cart_item(db, user.id, a.id, 2)

        original = fulfillment.price_lines

        def validate_then_sell_out(cart_items, products):
            lines = original(cart_items, products)
            other = SessionLocal()
            try:
                other.query(Product).filter(Product.id == a.id).update({Product.quantity: 1})
                other.commit()
            finally:
                other.close()
            return lines

        monkeypatch.setattr(fulfillment, "price_lines", validate_then_sell_out)

        with pytest.raises(InsufficientStock) as exc_info:
            place_order(db, user.id)

        assert exc_info.value.available == 1
        assert db.query(Order).count() == 0
        assert _stock(db, a.id) == 1
        assert _cart(db, user.id) == {a.id: 2}

    def test_line_added_during_placement_stays_in_cart(self, db, make_user, make_product, monkeypatch):
        user = make_user()
        a = make_product("A", price="10.00", quantity=5)
        b = make_product("B", price="5.00", quantity=5)
        crud.insert_cart_item(db, user.id, a.id, 1)
        user_id, b_id = user.id, b.id

        original = fulfillment.price_lines

        def validate_then_add_line(cart_items, products):
            lines = original(cart_items, products)
            other = SessionLocal()
            try:
                crud.insert_cart_item(other, user_id, b_id, 2)
            finally:
                other.close()
            return lines

        monkeypatch.setattr(fulfillment, "price_lines", validate_then_add_line)

        order = place_order(db, user_id)

        assert [i.product_id for i in order.items] == [a.id]
        assert _cart(db, user_id) == {b_id: 2}
        assert _stock(db, b_id) == 5

    def test_line_edited_during_placement_aborts_order(self, db, make_user, make_product, monkeypatch):
        user = make_user()
        a = make_product("A", price="10.00", quantity=5)
        crud.insert_cart_item(db, user.id, a.id, 1)
        user_id, a_id = user.id, a.id

        original = fulfillment.price_lines

        def validate_then_edit_line(cart_items, products):
            lines = original(cart_items, products)
            other = SessionLocal()
            try:
                other.query(CartItem).filter(CartItem.user_id == user_id).update({CartItem.quantity: 3})
                other.commit()
            finally:
                other.close()
            return lines

        monkeypatch.setattr(fulfillment, "price_lines", validate_then_edit_line)

        with pytest.raises(CartChanged):
            place_order(db, user_id)

        assert db.query(Order).count() == 0
        assert _cart(db, user_id) == {a_id: 3}
        assert _stock(db, a_id) == 5

    def test_sequential_orders_cannot_oversell(self, db, make_user, make_product):
        first = make_user("first@shop.io")
        second = make_user("second@shop.io")
        a = make_product("A", quantity=3)
        crud.insert_cart_item(db, first.id, a.id, 2)
        crud.insert_cart_item(db, second.id, a.id, 2)

        place_order(db, first.id)
        with pytest.raises(InsufficientStock):
            place_order(db, second.id)

        assert _stock(db, a.id) == 1
        assert _cart(db, second.id) == {a.id: 2}


class TestPriceSnapshot:
    def test_price_change_does_not_touch_placed_orders(self, db, make_user, make_product):
        user = make_user()
        a = make_product("A", price="10.00", quantity=10)
        crud.insert_cart_item(db, user.id, a.id, 2)
        first = place_order(db, user.id)

        a.price = Decimal("12.50")
        db.commit()
        crud.insert_cart_item(db, user.id, a.id, 2)
        second = place_order(db, user.id)

        db.expire_all()
        first = db.get(Order, first.id)
        assert first.total_amount == Decimal("20.00")
        assert first.items[0].price == Decimal("10.00")
        assert second.total_amount == Decimal("25.00")
        assert second.items[0].price == Decimal("12.50")

    def test_order_uses_price_at_placement(self, db, make_user, make_product):
        user = make_user()
        a = make_product("A", price="10.00", quantity=10)
        crud.insert_cart_item(db, user.id, a.id, 3)

        a.price = Decimal("9.99")
        db.commit()
        order = place_order(db, user.id)

        assert order.total_amount == Decimal("29.97")


@pytest.mark.slow
class TestConcurrentPlacement:
    def test_no_oversell_under_contention(self, db, make_user, make_product):
        stock = 3
        buyers = 10
        product = make_product("Last units", price="4.00", quantity=stock)
        users = [make_user(f"buyer{i}@shop.io") for i in range(buyers)]
        for user in users:
            crud.insert_cart_item(db, user.id, product.id, 1)
        user_ids = [u.id for u in users]
        product_id = product.id

        barrier = threading.Barrier(buyers)
        results = []
        lock = threading.Lock()

        def buy(user_id):
            session = SessionLocal()
            try:
                barrier.wait()
                place_order(session, user_id)
                outcome = "placed"
            except InsufficientStock:
                outcome = "sold_out"
            except Exception as e:  # surfaced through the assertion below
                outcome = repr(e)
            finally:
                session.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=buy, args=(uid,)) for uid in user_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert set(results) <= {"placed", "sold_out"}, results
        assert results.count("placed") == stock
        assert results.count("sold_out") == buyers - stock

        db.expire_all()
        ordered = db.query(func.sum(OrderItem.quantity)).filter(OrderItem.product_id == product_id).scalar()
        assert ordered == stock
        assert _stock(db, product_id) == 0

    def test_last_unit_goes_to_exactly_one_buyer(self, db, make_user, make_product):
        product = make_product("Single", price="1.00", quantity=1)
        users = [make_user(f"racer{i}@shop.io") for i in range(2)]
        for user in users:
            crud.insert_cart_item(db, user.id, product.id, 1)
        user_ids = [u.id for u in users]

        barrier = threading.Barrier(len(user_ids))
        placed = []

        def buy(user_id):
            session = SessionLocal()
            try:
                barrier.wait()
                place_order(session, user_id)
                placed.append(user_id)
            except InsufficientStock:
                pass
            finally:
                session.close()

        threads = [threading.Thread(target=buy, args=(uid,)) for uid in user_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert len(placed) == 1
        assert db.query(Order).count() == 1
        assert _stock(db, product.id) == 0
