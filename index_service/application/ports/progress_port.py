from abc import ABC, abstractmethod
from typing import Optional

from index_service.domain.models import IndexProgressSnapshot

class ProgressStorePort(ABC):
    """
    Interface (Port) for the single ephemeral progress record per doc_hash.
    """

    @abstractmethod
    def write(self, snapshot: IndexProgressSnapshot) -> None:
        """Overwrites the record for snapshot.doc_hash."""
        pass

    @abstractmethod
    def read(self, doc_hash: str) -> Optional[IndexProgressSnapshot]:
        """Returns the stored record, or None if absent or unreadable."""
        pass
