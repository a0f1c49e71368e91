from .users import User, SessionToken
from .regions import Region
from .inventory import Product, Imei
from .allocations import StockAllocation
from .sales import Sale, Commission, DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'Region',
    'Product', 'Imei',
    'StockAllocation',
    'Sale', 'Commission', 'DocumentSequence',
]
