from abc import ABC, abstractmethod

class BuildLockPort(ABC):
    """
    Interface (Port) for the per-doc_hash distributed build lock.
    """

    @abstractmethod
    def acquire(self, doc_hash: str, ttl_seconds: int) -> bool:
        """
        Atomically takes the lock if nobody holds it.

        Returns:
            True if this call took the lock, False if it was already held.
        """
        pass

    @abstractmethod
    def release(self, doc_hash: str) -> None:
        pass

    @abstractmethod
    def is_held(self, doc_hash: str) -> bool:
        pass
