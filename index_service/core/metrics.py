# File: index_service/core/metrics.py
from prometheus_client import Counter, Histogram

REQUEST_PROCESSING_DURATION_SECONDS = Histogram(
    "index_request_processing_duration_seconds",
    "Time taken to process an HTTP request.",
    ["method", "path"]
)

ENSURE_INDEX_TOTAL = Counter(
    "index_ensure_index_total",
    "Outcomes of ensure-index requests.",
    ["status"]
)

# Pipeline metrics
STAGE_JOBS_TOTAL = Counter(
    "index_stage_jobs_total",
    "Total number of pipeline stage jobs processed.",
    ["stage", "status"]
)

STAGE_DURATION_SECONDS = Histogram(
    "index_stage_duration_seconds",
    "Wall time spent inside one pipeline stage job.",
    ["stage"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600)
)

JOBS_DEDUPLICATED_TOTAL = Counter(
    "index_jobs_deduplicated_total",
    "Stage jobs skipped because the same job id was already queued.",
    ["stage"]
)

EMBEDDING_FALLBACK_TOTAL = Counter(
    "index_embedding_fallback_total",
    "Builds that switched to the hashing fallback embedding model.",
    ["reason"]
)

OPENAI_API_DURATION_SECONDS = Histogram(
    "index_openai_api_duration_seconds",
    "Duration of calls to OpenAI Embedding API.",
    ["model_name"]
)

OPENAI_API_ERRORS_TOTAL = Counter(
    "index_openai_api_errors_total",
    "Total errors from OpenAI Embedding API.",
    ["model_name", "error_type"]
)

# Artifact cache metrics
ARTIFACT_CACHE_EVENTS_TOTAL = Counter(
    "index_artifact_cache_events_total",
    "Artifact cache lookups and evictions.",
    ["event"]
)

ARTIFACT_LOAD_DURATION_SECONDS = Histogram(
    "index_artifact_load_duration_seconds",
    "Time to download and unpack one index artifact.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30)
)
