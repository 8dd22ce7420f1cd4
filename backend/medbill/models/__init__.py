from .inventory import Medicine, Batch, StockMovement
from .customers import Customer, CreditLedgerEntry
from .sales import Bill, BillItem, ControlledSaleRecord, SalesReturn, SalesReturnItem
from .documents import InvoiceSequence, AuditLogEntry

__all__ = [
    'Medicine', 'Batch', 'StockMovement',
    'Customer', 'CreditLedgerEntry',
    'Bill', 'BillItem', 'ControlledSaleRecord', 'SalesReturn', 'SalesReturnItem',
    'InvoiceSequence', 'AuditLogEntry',
]
