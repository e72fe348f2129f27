from typing import Any, Dict, List, Mapping

import structlog

from index_service.application.ports.embedding_model_port import EmbeddingModelPort
from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.use_cases.artifact_loader import ArtifactLoader
from index_service.core.exceptions import ArtifactNotReadyError, DocumentNotFoundError
from index_service.domain.models import ArtifactStatus

log = structlog.get_logger(__name__)


class SearchDocumentUseCase:
    """Query path: artifact cache, then the vector adapter chosen at load time."""

    def __init__(
        self,
        repository: IndexRepositoryPort,
        loader: ArtifactLoader,
        embedding_models: Mapping[str, EmbeddingModelPort],
    ):
        self.repository = repository
        self.loader = loader
        self.embedding_models = embedding_models
        self.log = log.bind(component="SearchDocumentUseCase")

    def execute(self, org_id: str, tender_id: str, doc_hash: str, query: str, top_k: int = 5) -> List[Dict[str, Any]]:
        document = self.repository.get_document(tender_id, doc_hash)
        if document is None or document.org_id != org_id:
            raise DocumentNotFoundError(f"Document {doc_hash} not found in tender {tender_id}")

        artifact_row = self.repository.get_artifact(doc_hash)
        if artifact_row is None or artifact_row.status != ArtifactStatus.READY or not artifact_row.storage_key:
            raise ArtifactNotReadyError(f"Document {doc_hash} has no searchable index")

        with self.loader.checkout(doc_hash, artifact_row.storage_key) as artifact:
            model_name = artifact.manifest.stats.embedding_model
            model = self.embedding_models.get(model_name)
            if model is None:
                raise ArtifactNotReadyError(f"No embedding model '{model_name}' available to query {doc_hash}")

            query_vector = model.embed_texts([query])[0]
            matches = artifact.vector_index.search(query_vector, top_k)
            results = []
            for match in matches:
                chunk = artifact.chunks[match.index]
                file_meta = artifact.names.get(chunk.file_id, {})
                results.append({
                    "chunk_id": chunk.chunk_id,
                    "score": match.score,
                    "page": chunk.page,
                    "file": file_meta.get("name"),
                    "text": chunk.text,
                })
            self.log.debug("Search served", doc_hash=doc_hash, top_k=top_k, results=len(results))
            return results
