# File: index_service/api/v1/endpoints/indexes.py
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from index_service import dependencies
from index_service.api.v1.schemas import (
    ArtifactInfo,
    EnsureIndexRequest,
    EnsureIndexResponse,
    ReleaseResponse,
    RetryResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
)
from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.application.use_cases.artifact_loader import ArtifactLoader
from index_service.application.use_cases.ensure_index_use_case import EnsureIndexUseCase
from index_service.application.use_cases.get_progress_use_case import GetProgressUseCase
from index_service.application.use_cases.retry_document_use_case import RetryDocumentUseCase
from index_service.application.use_cases.search_use_case import SearchDocumentUseCase
from index_service.core.exceptions import (
    ArtifactNotReadyError,
    DocumentNotFoundError,
    RetryNotAllowedError,
    UnprocessableDocumentError,
)
from index_service.domain.models import IndexProgressSnapshot

log = structlog.get_logger(__name__)
router = APIRouter()

DOC_PATH = "/tenders/{tender_id}/docs/{doc_hash}"


def get_job_queue(request: Request) -> JobQueuePort:
    return request.app.state.pipeline_client

def get_ensure_index_use_case(job_queue: JobQueuePort = Depends(get_job_queue)) -> EnsureIndexUseCase:
    return dependencies.get_ensure_index_use_case(job_queue)

def get_retry_use_case(job_queue: JobQueuePort = Depends(get_job_queue)) -> RetryDocumentUseCase:
    return dependencies.get_retry_use_case(job_queue)

def get_progress_use_case() -> GetProgressUseCase:
    return dependencies.get_progress_use_case()

def get_search_use_case() -> SearchDocumentUseCase:
    return dependencies.get_search_use_case()

def get_artifact_loader() -> ArtifactLoader:
    return dependencies.get_artifact_loader()


@router.post(
    f"{DOC_PATH}/ensure-index",
    response_model=EnsureIndexResponse,
    summary="Return the document's index if READY, otherwise start (or join) a build.",
)
def ensure_index(
    tender_id: str,
    doc_hash: str,
    body: EnsureIndexRequest = EnsureIndexRequest(),
    org_id: str = Header(..., alias="X-Org-ID"),
    use_case: EnsureIndexUseCase = Depends(get_ensure_index_use_case),
):
    endpoint_log = log.bind(org_id=org_id, tender_id=tender_id, doc_hash=doc_hash)
    try:
        result = use_case.execute(org_id, tender_id, doc_hash, force_rebuild=body.force_rebuild)
    except DocumentNotFoundError as e:
        endpoint_log.info("Document not found for ensure-index")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnprocessableDocumentError as e:
        endpoint_log.warning("Document cannot be indexed", error=str(e))
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return EnsureIndexResponse(
        status=result.status,
        doc_hash=result.doc_hash,
        artifact=ArtifactInfo.from_record(result.artifact) if result.artifact else None,
        progress=result.progress,
    )


@router.get(
    f"{DOC_PATH}/progress",
    response_model=IndexProgressSnapshot,
    summary="Latest build progress for a document.",
)
def get_progress(
    tender_id: str,
    doc_hash: str,
    org_id: str = Header(..., alias="X-Org-ID"),
    use_case: GetProgressUseCase = Depends(get_progress_use_case),
):
    return use_case.execute(doc_hash)


@router.post(
    f"{DOC_PATH}/release",
    response_model=ReleaseResponse,
    summary="Evict the document's artifact from this process's cache.",
)
def release_artifact(
    tender_id: str,
    doc_hash: str,
    org_id: str = Header(..., alias="X-Org-ID"),
    loader: ArtifactLoader = Depends(get_artifact_loader),
):
    return ReleaseResponse(doc_hash=doc_hash, released=loader.release(doc_hash))


@router.post(
    f"{DOC_PATH}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume a failed document from its first missing stage output.",
)
def retry_document(
    tender_id: str,
    doc_hash: str,
    org_id: str = Header(..., alias="X-Org-ID"),
    use_case: RetryDocumentUseCase = Depends(get_retry_use_case),
):
    try:
        result = use_case.execute(org_id, tender_id, doc_hash)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except UnprocessableDocumentError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return RetryResponse(doc_hash=doc_hash, stage=result["stage"], progress=result["progress"])


@router.post(
    f"{DOC_PATH}/search",
    response_model=SearchResponse,
    summary="Rank the document's chunks against a text query.",
)
def search_document(
    tender_id: str,
    doc_hash: str,
    body: SearchRequest,
    org_id: str = Header(..., alias="X-Org-ID"),
    use_case: SearchDocumentUseCase = Depends(get_search_use_case),
):
    try:
        results = use_case.execute(org_id, tender_id, doc_hash, body.query, top_k=body.top_k)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ArtifactNotReadyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return SearchResponse(doc_hash=doc_hash, results=[SearchHit(**r) for r in results])
