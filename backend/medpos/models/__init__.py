from .drawers import Drawer, DrawerSession, DocumentSequence, SESSION_OPEN, SESSION_CLOSED
from .sales import Sale, SaleLineItem, PaymentSplit, LINE_KIND_CATALOG, LINE_KIND_FREEFORM

__all__ = [
    'Drawer', 'DrawerSession', 'DocumentSequence',
    'Sale', 'SaleLineItem', 'PaymentSplit',
    'SESSION_OPEN', 'SESSION_CLOSED',
    'LINE_KIND_CATALOG', 'LINE_KIND_FREEFORM',
]
