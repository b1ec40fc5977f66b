from .auth import User, SessionToken
from .catalog import Product
from .carts import Cart, CartItem
from .orders import Order, OrderLineItem, OrderNumberSequence

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Cart', 'CartItem',
    'Order', 'OrderLineItem', 'OrderNumberSequence',
]
