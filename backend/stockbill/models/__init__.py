from .inventory import Product, CostLot, PriceHistory
from .billing import Card, Payment

__all__ = [
    'Product', 'CostLot', 'PriceHistory',
    'Card', 'Payment',
]
