import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import Engine, select, update, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.db.postgres_client import documents_table, index_artifacts_table
from index_service.domain.models import (
    ArtifactStatus,
    DocumentRecord,
    DocumentStatus,
    IndexArtifactRecord,
)

log = structlog.get_logger(__name__)

_ERROR_MAX_CHARS = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlIndexRepository(IndexRepositoryPort):
    """Document and IndexArtifact rows via SQLAlchemy Core on a sync engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.log = log.bind(component="SqlIndexRepository")

    def get_document(self, tender_id: str, doc_hash: str) -> Optional[DocumentRecord]:
        query = select(documents_table).where(
            documents_table.c.tender_id == tender_id,
            documents_table.c.doc_hash == doc_hash,
        ).order_by(documents_table.c.created_at.desc()).limit(1)
        with self.engine.connect() as connection:
            row = connection.execute(query).mappings().first()
        return DocumentRecord.model_validate(dict(row)) if row else None

    def get_document_by_id(self, document_id: str) -> Optional[DocumentRecord]:
        query = select(documents_table).where(documents_table.c.id == document_id)
        with self.engine.connect() as connection:
            row = connection.execute(query).mappings().first()
        return DocumentRecord.model_validate(dict(row)) if row else None

    def update_document(
        self,
        document_id: str,
        status: DocumentStatus,
        error: Optional[str] = None,
        pages: Optional[int] = None,
        has_text: Optional[bool] = None,
        size_bytes: Optional[int] = None,
    ) -> bool:
        update_log = self.log.bind(document_id=document_id, new_status=status.value)
        values: Dict[str, Any] = {"status": status.value, "updated_at": _utcnow()}
        if status == DocumentStatus.FAILED:
            values["error"] = (error or "unknown error")[:_ERROR_MAX_CHARS]
        else:
            values["error"] = None
        if pages is not None:
            values["pages"] = pages
        if has_text is not None:
            values["has_text"] = has_text
        if size_bytes is not None:
            values["bytes"] = size_bytes

        try:
            with self.engine.begin() as connection:
                result = connection.execute(
                    update(documents_table).where(documents_table.c.id == document_id).values(**values)
                )
        except SQLAlchemyError as e:
            update_log.error("SQLAlchemyError during document status update", error=str(e), exc_info=True)
            raise

        if result.rowcount == 0:
            update_log.warning("Attempted to update status for non-existent document_id.")
            return False
        update_log.info("Document status updated.", updated_fields=list(values.keys()))
        return True

    def get_artifact(self, doc_hash: str) -> Optional[IndexArtifactRecord]:
        query = select(index_artifacts_table).where(index_artifacts_table.c.doc_hash == doc_hash)
        with self.engine.connect() as connection:
            row = connection.execute(query).mappings().first()
        return IndexArtifactRecord.model_validate(dict(row)) if row else None

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
        now = _utcnow()
        changes: Dict[str, Any] = {
            "org_id": org_id,
            "tender_id": tender_id,
            "status": status.value,
            "version": version,
            "updated_at": now,
        }
        optional = {
            "storage_key": storage_key,
            "total_chunks": total_chunks,
            "total_pages": total_pages,
            "bytes_approx": bytes_approx,
        }
        changes.update({k: v for k, v in optional.items() if v is not None})

        try:
            if not self._update_artifact(doc_hash, changes):
                try:
                    with self.engine.begin() as connection:
                        connection.execute(insert(index_artifacts_table).values(
                            id=str(uuid.uuid4()),
                            doc_hash=doc_hash,
                            created_at=now,
                            storage_key=storage_key,
                            total_chunks=total_chunks or 0,
                            total_pages=total_pages or 0,
                            bytes_approx=bytes_approx or 0,
                            **{k: v for k, v in changes.items() if k not in optional},
                        ))
                except IntegrityError:
                    # Lost the insert race to a concurrent writer; last writer wins
                    self._update_artifact(doc_hash, changes)
        except SQLAlchemyError as e:
            self.log.error("SQLAlchemyError during artifact upsert", doc_hash=doc_hash, error=str(e), exc_info=True)
            raise

        record = self.get_artifact(doc_hash)
        if record is None:
            raise RuntimeError(f"Artifact row for {doc_hash} vanished after upsert")
        self.log.debug("Artifact upserted", doc_hash=doc_hash, status=status.value)
        return record

    def _update_artifact(self, doc_hash: str, changes: Dict[str, Any]) -> bool:
        with self.engine.begin() as connection:
            result = connection.execute(
                update(index_artifacts_table).where(index_artifacts_table.c.doc_hash == doc_hash).values(**changes)
            )
        return result.rowcount > 0

    def set_artifact_status(self, doc_hash: str, status: ArtifactStatus) -> bool:
        return self._update_artifact(doc_hash, {"status": status.value, "updated_at": _utcnow()})
