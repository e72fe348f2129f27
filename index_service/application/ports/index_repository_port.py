from abc import ABC, abstractmethod
from typing import Optional

from index_service.domain.models import (
    ArtifactStatus,
    DocumentRecord,
    DocumentStatus,
    IndexArtifactRecord,
)

class IndexRepositoryPort(ABC):
    """
    Interface (Port) for the durable Document and IndexArtifact rows.
    Writes are last-writer-wins per doc_hash.
    """

    @abstractmethod
    def get_document(self, tender_id: str, doc_hash: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def get_document_by_id(self, document_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def update_document(
        self,
        document_id: str,
        status: DocumentStatus,
        error: Optional[str] = None,
        pages: Optional[int] = None,
        has_text: Optional[bool] = None,
        size_bytes: Optional[int] = None,
    ) -> bool:
        """
        Updates a document's status and, optionally, its extraction metadata.
        The error column is cleared unless status is FAILED.

        Returns:
            True if a row was updated.
        """
        pass

    @abstractmethod
    def get_artifact(self, doc_hash: str) -> Optional[IndexArtifactRecord]:
        pass

    @abstractmethod
    def upsert_artifact(
        self,
        doc_hash: str,
        org_id: str,
        tender_id: str,
        status: ArtifactStatus,
        version: int,
        storage_key: Optional[str] = None,
        total_chunks: Optional[int] = None,
        total_pages: Optional[int] = None,
        bytes_approx: Optional[int] = None,
    ) -> IndexArtifactRecord:
        """
        Creates the artifact row for doc_hash or updates the existing one.
        Fields passed as None keep their stored value on update.
        """
        pass

    @abstractmethod
    def set_artifact_status(self, doc_hash: str, status: ArtifactStatus) -> bool:
        pass
