from .catalog import CatalogItem, Provider, ProviderOffering
from .prescriptions import Prescription, PrescriptionItem
from .orders import Order, OrderItem, TransactionReference, TransactionReferenceEntry
from .auth import User, SessionToken
from .consent import Consent

__all__ = [
    'CatalogItem', 'Provider', 'ProviderOffering',
    'Prescription', 'PrescriptionItem',
    'Order', 'OrderItem', 'TransactionReference', 'TransactionReferenceEntry',
    'User', 'SessionToken',
    'Consent',
]
