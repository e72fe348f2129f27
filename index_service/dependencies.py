# File: index_service/dependencies.py
from typing import Dict, Optional

import redis
import structlog

from index_service.application.ports.embedding_model_port import EmbeddingModelPort
from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.application.ports.lock_port import BuildLockPort
from index_service.application.ports.storage_port import StoragePort
from index_service.application.progress import ProgressTracker
from index_service.application.use_cases.artifact_loader import ArtifactLoader, build_artifact_cache
from index_service.application.use_cases.ensure_index_use_case import EnsureIndexUseCase
from index_service.application.use_cases.get_progress_use_case import GetProgressUseCase
from index_service.application.use_cases.retry_document_use_case import RetryDocumentUseCase
from index_service.application.use_cases.search_use_case import SearchDocumentUseCase
from index_service.application.use_cases.stages import (
    ChunkStage,
    EmbedStage,
    ExtractStage,
    ManifestStage,
    PipelineStageUseCase,
    SummaryStage,
)
from index_service.core.config import settings
from index_service.db.postgres_client import dispose_sync_engine, get_sync_engine
from index_service.domain.models import PipelineStage

# Implementaciones concretas (Adaptadores)
from index_service.infrastructure.chunkers.window_chunker_adapter import WindowChunkerAdapter
from index_service.infrastructure.embedding_models.hashing_adapter import HashingEmbeddingAdapter
from index_service.infrastructure.embedding_models.openai_adapter import OpenAIAdapter
from index_service.infrastructure.extractors import CompositeExtractorAdapter, PdfAdapter, TxtAdapter
from index_service.infrastructure.persistence.sql_index_repository import SqlIndexRepository
from index_service.infrastructure.state.redis_lock_adapter import RedisBuildLockAdapter
from index_service.infrastructure.state.redis_progress_adapter import RedisProgressAdapter
from index_service.infrastructure.storage.s3_storage_adapter import S3StorageAdapter
from index_service.services.pipeline_client import PipelineClient

log = structlog.get_logger(__name__)

# Per-process singletons, created on first use and torn down by shutdown()
_redis_client: Optional[redis.Redis] = None
_pipeline_client: Optional[PipelineClient] = None
_repository: Optional[IndexRepositoryPort] = None
_storage: Optional[StoragePort] = None
_artifact_loader: Optional[ArtifactLoader] = None
_embedding_models: Optional[Dict[str, EmbeddingModelPort]] = None
_stage_use_cases: Dict[PipelineStage, PipelineStageUseCase] = {}


def get_redis_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL)
    return _redis_client


def get_pipeline_client() -> JobQueuePort:
    global _pipeline_client
    if _pipeline_client is None:
        _pipeline_client = PipelineClient(redis_client=get_redis_client())
    return _pipeline_client


def get_repository() -> IndexRepositoryPort:
    global _repository
    if _repository is None:
        _repository = SqlIndexRepository(get_sync_engine())
    return _repository


def get_storage() -> StoragePort:
    global _storage
    if _storage is None:
        _storage = S3StorageAdapter()
    return _storage


def get_lock() -> BuildLockPort:
    return RedisBuildLockAdapter(get_redis_client())


def get_progress_tracker() -> ProgressTracker:
    return ProgressTracker(RedisProgressAdapter(get_redis_client(), settings.PROGRESS_TTL_SECONDS))


def get_embedding_models() -> Dict[str, EmbeddingModelPort]:
    """Models keyed by name, so queries use the model an artifact was built with."""
    global _embedding_models
    if _embedding_models is None:
        primary = OpenAIAdapter()
        fallback = HashingEmbeddingAdapter()
        _embedding_models = {primary.model_name: primary, fallback.model_name: fallback}
    return _embedding_models


def get_artifact_loader() -> ArtifactLoader:
    global _artifact_loader
    if _artifact_loader is None:
        _artifact_loader = ArtifactLoader(get_storage(), build_artifact_cache())
    return _artifact_loader


def get_ensure_index_use_case(job_queue: JobQueuePort) -> EnsureIndexUseCase:
    return EnsureIndexUseCase(
        repository=get_repository(),
        job_queue=job_queue,
        lock=get_lock(),
        progress=get_progress_tracker(),
    )


def get_progress_use_case() -> GetProgressUseCase:
    return GetProgressUseCase(progress=get_progress_tracker(), repository=get_repository())


def get_retry_use_case(job_queue: JobQueuePort) -> RetryDocumentUseCase:
    return RetryDocumentUseCase(
        repository=get_repository(),
        storage=get_storage(),
        job_queue=job_queue,
        lock=get_lock(),
        progress=get_progress_tracker(),
    )


def get_search_use_case() -> SearchDocumentUseCase:
    return SearchDocumentUseCase(
        repository=get_repository(),
        loader=get_artifact_loader(),
        embedding_models=get_embedding_models(),
    )


def get_stage_use_case(stage: PipelineStage) -> PipelineStageUseCase:
    """
    Builds (once per process) the use case for one pipeline stage with all
    its concrete adapters injected.
    """
    if stage in _stage_use_cases:
        return _stage_use_cases[stage]

    common = dict(
        repository=get_repository(),
        storage=get_storage(),
        job_queue=get_pipeline_client(),
        progress=get_progress_tracker(),
        lock=get_lock(),
    )
    if stage == PipelineStage.MANIFEST:
        use_case = ManifestStage(**common)
    elif stage == PipelineStage.EXTRACT:
        txt_extractor = TxtAdapter()
        composite_extractor = CompositeExtractorAdapter(
            extractors={
                "application/pdf": PdfAdapter(),
                "text/plain": txt_extractor,
            }
        )
        use_case = ExtractStage(**common, extractor=composite_extractor)
    elif stage == PipelineStage.CHUNK:
        use_case = ChunkStage(**common, chunker=WindowChunkerAdapter())
    elif stage == PipelineStage.EMBED:
        models = get_embedding_models()
        fallback = models[HashingEmbeddingAdapter().model_name] if settings.EMBEDDING_FALLBACK_ENABLED else None
        use_case = EmbedStage(**common, embedding_model=models[settings.EMBEDDING_MODEL_NAME], fallback_model=fallback)
    else:
        use_case = SummaryStage(**common)

    _stage_use_cases[stage] = use_case
    return use_case


def shutdown() -> None:
    global _redis_client, _pipeline_client, _repository, _storage, _artifact_loader, _embedding_models
    log.info("Releasing process resources...")
    if _artifact_loader is not None:
        _artifact_loader.close()
    if _pipeline_client is not None:
        _pipeline_client.close()
    if _redis_client is not None:
        _redis_client.close()
    dispose_sync_engine()
    _redis_client = _pipeline_client = _repository = _storage = _artifact_loader = _embedding_models = None
    _stage_use_cases.clear()
