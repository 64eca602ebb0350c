from .catalog import Category, Product
from .inventory import StockLog
from .customers import Customer, Address
from .couriers import Courier
from .orders import Order, OrderItem, PreparationIngredient, ORDER_TYPES, ORDER_STATUSES, PAYMENT_METHODS

__all__ = [
    'Category', 'Product',
    'StockLog',
    'Customer', 'Address',
    'Courier',
    'Order', 'OrderItem', 'PreparationIngredient',
    'ORDER_TYPES', 'ORDER_STATUSES', 'PAYMENT_METHODS',
]
