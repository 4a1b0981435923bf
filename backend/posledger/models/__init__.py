from .guards import ImmutableRecordError
from .catalog import Product, RecipeLine
from .inventory import InventoryItem, StockMovement, MOVEMENT_KINDS
from .sales import SalesTransaction, SalesTransactionLine, InventoryDeductionFailure
from .reports import (
    DailyReport, DailyReportItem, DailyReportEntry, ReportExclusion,
    REPORT_OPEN, REPORT_FINALIZED,
)
from .documents import DocumentSequence

__all__ = [
    'ImmutableRecordError',
    'Product', 'RecipeLine',
    'InventoryItem', 'StockMovement', 'MOVEMENT_KINDS',
    'SalesTransaction', 'SalesTransactionLine', 'InventoryDeductionFailure',
    'DailyReport', 'DailyReportItem', 'DailyReportEntry', 'ReportExclusion',
    'REPORT_OPEN', 'REPORT_FINALIZED',
    'DocumentSequence',
]
