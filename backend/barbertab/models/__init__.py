from .clients import Client
from .catalog import Staff, Service, Product, StockMovement
from .scheduling import Appointment
from .tabs import Tab, TabLineItem
from .ledger import LedgerTransaction

__all__ = [
    'Client',
    'Staff', 'Service', 'Product', 'StockMovement',
    'Appointment',
    'Tab', 'TabLineItem',
    'LedgerTransaction',
]
