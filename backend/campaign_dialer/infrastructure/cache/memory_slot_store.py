"""
In-Memory Call Slot Store
Per-organization in-flight counters for a single worker process
"""
from typing import Dict

from campaign_dialer.domain.interfaces.call_slot_store import CallSlotStore


class InMemoryCallSlotStore(CallSlotStore):
    """Counter dict; check-and-increment has no await so it is atomic in the event loop"""

    def __init__(self):
        self._active_calls: Dict[str, int] = {}  # organization_id -> count

    async def try_acquire(self, organization_id: str, limit: int) -> bool:
        current = self._active_calls.get(organization_id, 0)
        if current >= limit:
            return False
        self._active_calls[organization_id] = current + 1
        return True

    async def release(self, organization_id: str) -> None:
        if self._active_calls.get(organization_id, 0) > 0:
            self._active_calls[organization_id] -= 1

    async def count(self, organization_id: str) -> int:
        return self._active_calls.get(organization_id, 0)
