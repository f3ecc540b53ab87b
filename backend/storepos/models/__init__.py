from .inventory import Product
from .sales import Sale, SALE_STATUS_COMPLETED, SALE_STATUS_ANNULLED, SALE_STATUSES
from .auth import User

__all__ = [
    'Product',
    'Sale', 'SALE_STATUS_COMPLETED', 'SALE_STATUS_ANNULLED', 'SALE_STATUSES',
    'User',
]
