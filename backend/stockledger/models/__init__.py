from .catalog import Product
from .inventory import Inventory, InventoryMovement
from .invoices import Invoice, InvoiceItem, DocumentSequence
from .audit import AuditLogEntry
from .auth import User, SessionToken

__all__ = [
    'Product',
    'Inventory', 'InventoryMovement',
    'Invoice', 'InvoiceItem', 'DocumentSequence',
    'AuditLogEntry',
    'User', 'SessionToken',
]
