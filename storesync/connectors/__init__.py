"""Remote catalog connectors for StoreSync"""

from storesync.connectors.base import BaseConnector
from storesync.connectors.woocommerce import WooCommerceConnector

__all__ = [
    "BaseConnector",
    "WooCommerceConnector"
]
