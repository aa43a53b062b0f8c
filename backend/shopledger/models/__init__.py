from .owners import Owner
from .inventory import InventoryItem
from .sales import Sale, SaleItem, PAYMENT_METHODS, SETTLED_PAYMENT_METHODS
from .income import IncomeSummary
from .devices import Device

__all__ = [
    'Owner',
    'InventoryItem',
    'Sale', 'SaleItem', 'PAYMENT_METHODS', 'SETTLED_PAYMENT_METHODS',
    'IncomeSummary',
    'Device',
]
