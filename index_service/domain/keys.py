import hashlib
import posixpath

from index_service.domain.models import PipelineStage


def document_base_path(org_id: str, tender_id: str, doc_hash: str) -> str:
    return f"org/{org_id}/tender/{tender_id}/docs/{doc_hash}"


def artifact_storage_key(org_id: str, tender_id: str, doc_hash: str, version: int) -> str:
    return f"tenders/{org_id}/{tender_id}/indexes/{doc_hash}/v{version}/index.v{version}.tar.gz"


def stage_job_id(tender_id: str, doc_hash: str, stage: PipelineStage) -> str:
    """Job identity used for queue-side dedup of one stage of one document."""
    return f"{tender_id}:{doc_hash}:{stage.value}"


def normalize_path(path: str) -> str:
    cleaned = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
    return "" if cleaned == "." else cleaned


def file_id_for_path(path: str) -> str:
    return hashlib.sha1(normalize_path(path).encode("utf-8")).hexdigest()
