from .tenancy import Organization
from .customers import Customer
from .sales import PaymentMethod, Sale, SaleItem
from .settings import PriceControlSettings
from .financial import FinancialMovement
from .audit import CreditLog
from .documents import DocumentSequence

__all__ = [
    'Organization',
    'Customer',
    'PaymentMethod', 'Sale', 'SaleItem',
    'PriceControlSettings',
    'FinancialMovement',
    'CreditLog',
    'DocumentSequence',
]
