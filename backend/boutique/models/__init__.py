from .catalog import Product
from .inventory import StockLevel, StockMovement
from .orders import Order, OrderItem, Transaction

__all__ = [
    'Product',
    'StockLevel', 'StockMovement',
    'Order', 'OrderItem', 'Transaction',
]
