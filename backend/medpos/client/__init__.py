from .offline_queue import DrainResult, OfflineQueue, QueuedReceipt
from .submitter import SaleSubmitter
from .transport import CommittedSale, HttpConnectivityProbe, HttpSaleTransport, SaleIntent, new_idempotency_key

__all__ = [
    'OfflineQueue', 'QueuedReceipt', 'DrainResult',
    'SaleSubmitter',
    'SaleIntent', 'CommittedSale', 'HttpSaleTransport', 'HttpConnectivityProbe',
    'new_idempotency_key',
]
