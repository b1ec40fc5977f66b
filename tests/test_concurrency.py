# Overview: Pytest coverage for concurrent checkout against a shared product.

"""
Concurrency Tests

Many customers check out the last units of one product at the same time
through separate sessions/connections on a file-backed SQLite database.
Stock must never go negative and exactly `stock` units are sold.
"""

import threading

from storefront.errors import InsufficientStockError
from storefront.extensions import db
from storefront.models import Order, Product, User
from storefront.services import cart_service, order_service
from storefront.services.auth_service import hash_password

from conftest import shipping_payload


BUYERS = 8
STOCK = 3


def _seed(app):
    with app.app_context():
        product = Product(sku="HOT-1", name="Limited Sneaker", price=100000, stock=STOCK, sales_count=0)
        db.session.add(product)
        db.session.flush()

        password_hash = hash_password("Password123")
        user_ids = []
        for n in range(BUYERS):
            user = User(email=f"buyer{n}@example.com", password_hash=password_hash, name=f"Buyer {n}")
            db.session.add(user)
            db.session.flush()
            user_ids.append(user.id)
        db.session.commit()

        for user_id in user_ids:
            cart_service.add_item(user_id, product.id, 1)

        return product.id, user_ids


def test_parallel_checkout_never_oversells(file_app):
    product_id, user_ids = _seed(file_app)

    barrier = threading.Barrier(len(user_ids))
    results = []
    lock = threading.Lock()

    def buy(user_id):
        with file_app.app_context():
            barrier.wait()
            try:
                order = order_service.create_order(
                    user_id,
                    shipping=shipping_payload(),
                    payment={"method": "card", "status": "completed", "transactionId": f"imp_{user_id}"},
                )
                outcome = ("ok", order.order_number)
            except InsufficientStockError:
                outcome = ("sold_out", None)
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=buy, args=(user_id,)) for user_id in user_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(results) == BUYERS
    winners = [number for status, number in results if status == "ok"]
    assert len(winners) == STOCK
    assert len(set(winners)) == STOCK

    with file_app.app_context():
        product = db.session.get(Product, product_id)
        assert product.stock == 0
        assert product.sales_count == STOCK
        assert db.session.query(Order).count() == STOCK
