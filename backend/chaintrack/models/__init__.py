from .accounts import User
from .catalog import Product
from .units import ProductUnit
from .stock import BulkStock
from .orders import Order, OrderUnit, CartItem
from .settings import SerialSettings, ReclaimedSerial, SerialReservation
from .ledger import LedgerEvent

__all__ = [
    'User',
    'Product',
    'ProductUnit',
    'BulkStock',
    'Order', 'OrderUnit', 'CartItem',
    'SerialSettings', 'ReclaimedSerial', 'SerialReservation',
    'LedgerEvent',
]
