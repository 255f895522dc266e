"""
Per-tenant downstream subscriber counts
"""
import logging
from typing import Dict

from relay.utils.metrics import update_room_subscribers

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """
    Counts active subscribers per tenant.
    Entries are created on first use and kept at zero, so repeated
    leaves stay harmless. Never touches the connection pool.
    """
    
    def __init__(self):
        self.counts: Dict[str, int] = {}
    
    def increment(self, tenant_id: str) -> int:
        """Add a subscriber to a tenant"""
        count = self.counts.get(tenant_id, 0) + 1
        self.counts[tenant_id] = count
        update_room_subscribers(tenant_id, count)
        logger.info("Room %s: %d clients", tenant_id, count)
        return count
    
    def decrement(self, tenant_id: str) -> int:
        """Remove a subscriber from a tenant; floors at zero"""
        count = self.counts.get(tenant_id, 0)
        if count > 0:
            count -= 1
            logger.info("Room %s: %d clients", tenant_id, count)
        self.counts[tenant_id] = count
        update_room_subscribers(tenant_id, count)
        return count
    
    def count(self, tenant_id: str) -> int:
        """Get subscriber count for a tenant"""
        return self.counts.get(tenant_id, 0)
    
    def snapshot(self) -> Dict[str, int]:
        """Copy of all counts, for stats"""
        return dict(self.counts)
