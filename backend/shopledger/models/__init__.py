from .inventory import Product, StockMovement
from .finance import Sale, SaleItem, Expense

__all__ = [
    'Product', 'StockMovement',
    'Sale', 'SaleItem', 'Expense',
]
