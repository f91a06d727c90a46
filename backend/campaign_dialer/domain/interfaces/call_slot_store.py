"""
Call Slot Store Interface
Per-organization in-flight call counter
"""
from abc import ABC, abstractmethod


class CallSlotStore(ABC):
    """
    Concurrency-cap counter.

    `try_acquire` checks the cap and increments in one atomic step so
    two dispatchers cannot both pass the check.
    """

    @abstractmethod
    async def try_acquire(self, organization_id: str, limit: int) -> bool:
        pass

    @abstractmethod
    async def release(self, organization_id: str) -> None:
        """Decrement, never below zero."""
        pass

    @abstractmethod
    async def count(self, organization_id: str) -> int:
        pass

    async def close(self) -> None:
        """Release resources"""
        return None
