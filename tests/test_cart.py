# Overview: Pytest coverage for the cart store (service and API).

"""
Cart Store Tests

Verifies:
- Cart is created lazily, one per user
- Adding the same product sums quantities, checked against stock
- Price snapshot reflects the discount in effect at add/update time
- Quantity validation (>= 1, integers only)
- Update / remove / clear recompute total_amount
- Cart lines never touch stock
"""

import pytest

from storefront.errors import (
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
    OutOfStockError,
)
from storefront.models import Cart, Product
from storefront.services import cart_service

from conftest import make_product


class TestCartService:

    def test_get_cart_creates_empty_cart_once(self, db_session, customer):
        first = cart_service.get_cart(customer.id)
        second = cart_service.get_cart(customer.id)

        assert first.id == second.id
        assert first.items == []
        assert first.total_amount == 0
        assert db_session.query(Cart).filter_by(user_id=customer.id).count() == 1

    def test_add_item_snapshots_discounted_price(self, db_session, customer, discounted_product):
        cart = cart_service.add_item(customer.id, discounted_product.id, 2)

        assert len(cart.items) == 1
        assert cart.items[0].price_snapshot == 18000
        assert cart.total_amount == 36000

    def test_add_same_product_sums_quantity(self, db_session, customer, product):
        cart_service.add_item(customer.id, product.id, 2)
        cart = cart_service.add_item(customer.id, product.id, 3)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        assert cart.total_amount == 50000

    def test_add_beyond_stock_reports_current_stock(self, db_session, customer, product):
        cart_service.add_item(customer.id, product.id, 4)

        with pytest.raises(InsufficientStockError) as exc_info:
            cart_service.add_item(customer.id, product.id, 2)

        assert exc_info.value.details["current_stock"] == 5
        cart = cart_service.get_cart(customer.id)
        assert cart.items[0].quantity == 4

    def test_add_out_of_stock_product(self, db_session, customer):
        sold_out = make_product(db_session, "SKU-EMPTY", stock=0)

        with pytest.raises(OutOfStockError):
            cart_service.add_item(customer.id, sold_out.id, 1)

    def test_add_unknown_product(self, db_session, customer):
        with pytest.raises(NotFoundError):
            cart_service.add_item(customer.id, 99999, 1)

    @pytest.mark.parametrize("quantity", [0, -1, "abc", 1.5, True, None])
    def test_add_rejects_invalid_quantity(self, db_session, customer, product, quantity):
        with pytest.raises(InvalidQuantityError):
            cart_service.add_item(customer.id, product.id, quantity)

    def test_add_accepts_digit_string_quantity(self, db_session, customer, product):
        cart = cart_service.add_item(customer.id, product.id, "2")
        assert cart.items[0].quantity == 2

    def test_update_item_resnapshots_price(self, db_session, customer, product):
        cart = cart_service.add_item(customer.id, product.id, 1)
        item_id = cart.items[0].id

        product.discount_enabled = True
        product.discount_rate = 50
        db_session.commit()

        cart = cart_service.update_item(customer.id, item_id, 3)

        assert cart.items[0].quantity == 3
        assert cart.items[0].price_snapshot == 5000
        assert cart.total_amount == 15000

    def test_update_item_beyond_stock(self, db_session, customer, product):
        cart = cart_service.add_item(customer.id, product.id, 1)

        with pytest.raises(InsufficientStockError):
            cart_service.update_item(customer.id, cart.items[0].id, 6)

    def test_update_unknown_item(self, db_session, customer, product):
        cart_service.add_item(customer.id, product.id, 1)

        with pytest.raises(NotFoundError):
            cart_service.update_item(customer.id, 99999, 1)

    def test_remove_item_recomputes_total(self, db_session, customer, product, discounted_product):
        cart_service.add_item(customer.id, product.id, 1)
        cart = cart_service.add_item(customer.id, discounted_product.id, 1)
        shirt_line = next(i for i in cart.items if i.product_id == product.id)

        cart = cart_service.remove_item(customer.id, shirt_line.id)

        assert [i.product_id for i in cart.items] == [discounted_product.id]
        assert cart.total_amount == 18000

    def test_remove_unknown_item(self, db_session, customer):
        cart_service.get_cart(customer.id)

        with pytest.raises(NotFoundError):
            cart_service.remove_item(customer.id, 99999)

    def test_clear_cart(self, db_session, customer, product):
        cart_service.add_item(customer.id, product.id, 2)

        cart = cart_service.clear_cart(customer.id)

        assert cart.items == []
        assert cart.total_amount == 0

    def test_cart_lines_do_not_hold_stock(self, db_session, customer, other_customer, product):
        cart_service.add_item(customer.id, product.id, 5)
        cart_service.add_item(other_customer.id, product.id, 5)

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock == 5


class TestCartApi:

    def test_requires_auth(self, client, db_session):
        assert client.get('/api/cart').status_code == 401
        assert client.post('/api/cart/items', json={"productId": 1}).status_code == 401

    def test_add_and_get(self, client, customer_headers, product):
        resp = client.post('/api/cart/items', json={"productId": product.id, "quantity": 2}, headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["cart"]["total_amount"] == 20000

        resp = client.get('/api/cart', headers=customer_headers)
        assert resp.status_code == 200
        items = resp.json["cart"]["items"]
        assert len(items) == 1
        assert items[0]["product_name"] == "Linen Shirt"
        assert items[0]["quantity"] == 2

    def test_add_insufficient_stock_returns_400_with_stock(self, client, customer_headers, product):
        resp = client.post('/api/cart/items', json={"productId": product.id, "quantity": 9}, headers=customer_headers)

        assert resp.status_code == 400
        assert resp.json["code"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"]["current_stock"] == 5

    def test_add_missing_product_id(self, client, customer_headers):
        resp = client.post('/api/cart/items', json={"quantity": 1}, headers=customer_headers)
        assert resp.status_code == 400

    def test_update_remove_clear(self, client, customer_headers, product, discounted_product):
        resp = client.post('/api/cart/items', json={"productId": product.id, "quantity": 1}, headers=customer_headers)
        item_id = resp.json["cart"]["items"][0]["id"]
        client.post('/api/cart/items', json={"productId": discounted_product.id, "quantity": 1}, headers=customer_headers)

        resp = client.put(f'/api/cart/items/{item_id}', json={"quantity": 0}, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "INVALID_QUANTITY"

        resp = client.put(f'/api/cart/items/{item_id}', json={"quantity": 2}, headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["cart"]["total_amount"] == 2 * 10000 + 18000

        resp = client.delete(f'/api/cart/items/{item_id}', headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["cart"]["total_amount"] == 18000

        resp = client.delete('/api/cart/items/99999', headers=customer_headers)
        assert resp.status_code == 404

        resp = client.delete('/api/cart', headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["cart"]["items"] == []
