from .tenancy import Organization, Store, User, USER_ROLES
from .inventory import Product, StockMovement, MOVEMENT_TYPES
from .customers import Customer
from .sales import Sale, SaleItem, SalePayment, PaymentMethod, SALE_STATUSES, PAYMENT_TYPES

__all__ = [
    'Organization', 'Store', 'User',
    'Product', 'StockMovement',
    'Customer',
    'Sale', 'SaleItem', 'SalePayment', 'PaymentMethod',
    'USER_ROLES', 'MOVEMENT_TYPES', 'SALE_STATUSES', 'PAYMENT_TYPES',
]
