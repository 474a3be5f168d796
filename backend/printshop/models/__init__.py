from .auth import User
from .catalog import Product, PricingRule
from .customers import Customer
from .orders import Order, OrderItem, OrderStatusHistory
from .billing import Invoice, Payment
from .production import ServiceJob, ServiceStatusHistory, ServiceJobComment
from .approvals import ApprovalRequest
from .quotations import Quotation, QuotationItem
from .documents import DocumentSequence
from .settings import Setting

__all__ = [
    'User',
    'Product', 'PricingRule',
    'Customer',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'Invoice', 'Payment',
    'ServiceJob', 'ServiceStatusHistory', 'ServiceJobComment',
    'ApprovalRequest',
    'Quotation', 'QuotationItem',
    'DocumentSequence',
    'Setting',
]
