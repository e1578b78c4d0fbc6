from .inventory import Product, StockTransaction
from .customers import Customer, MembershipTierConfig, Member, PointTransaction
from .invoices import Invoice, InvoiceLine
from .receivables import AccountReceivable, ReceivablePayment
from .refunds import Refund, RefundLine

__all__ = [
    'Product', 'StockTransaction',
    'Customer', 'MembershipTierConfig', 'Member', 'PointTransaction',
    'Invoice', 'InvoiceLine',
    'AccountReceivable', 'ReceivablePayment',
    'Refund', 'RefundLine',
]
