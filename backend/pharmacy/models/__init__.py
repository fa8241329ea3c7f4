from .medicines import Medicine, MedicineSnapshot
from .sales import Sale, SaleLine, StockDeduction, SaleItem, SaleRecord

__all__ = [
    'Medicine', 'MedicineSnapshot',
    'Sale', 'SaleLine', 'StockDeduction', 'SaleItem', 'SaleRecord',
]
