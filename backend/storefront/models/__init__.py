from .catalog import Product, Warehouse, ProductStock
from .customers import User, Address, Cart, CartItem
from .orders import Order, OrderItem, TransactionHistory
from .stock import StockTransfer, StockTransferLog

__all__ = [
    'Product', 'Warehouse', 'ProductStock',
    'User', 'Address', 'Cart', 'CartItem',
    'Order', 'OrderItem', 'TransactionHistory',
    'StockTransfer', 'StockTransferLog',
]
