# File: index_service/main.py
import time
import uuid
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from prometheus_client import make_asgi_app

from index_service.core.logging_config import setup_logging
setup_logging(role="api")

from index_service.core.config import settings
from index_service.api.v1.endpoints import indexes
from index_service import dependencies
from index_service.services.pipeline_client import PipelineClient
from index_service.core.metrics import REQUEST_PROCESSING_DURATION_SECONDS

log = structlog.get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Index Service startup sequence initiated...")
    app.state.pipeline_client = PipelineClient(redis_client=dependencies.get_redis_client())
    log.info("Dependencies (Pipeline client) initialized.")
    yield
    log.info("Index Service shutdown sequence initiated...")
    app.state.pipeline_client.close()
    dependencies.shutdown()
    log.info("Shutdown sequence complete.")

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    version="1.0.0",
    description="Tender document indexing pipeline: build orchestration, progress and search.",
    lifespan=lifespan,
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.middleware("http")
async def add_request_context_and_metrics(request: Request, call_next):
    start_time = time.perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))

    if request.url.path.startswith("/metrics"):
        return await call_next(request)

    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")

    process_time = time.perf_counter() - start_time
    route = request.scope.get("route")
    path_label = getattr(route, "path", request.url.path)
    REQUEST_PROCESSING_DURATION_SECONDS.labels(method=request.method, path=path_label).observe(process_time)

    log.info("Request processed", method=request.method, path=request.url.path, status_code=response.status_code, duration_ms=round(process_time * 1000, 2))
    return response

app.include_router(indexes.router, prefix=settings.API_V1_STR, tags=["Indexes"])

@app.get("/health", tags=["Health Check"])
async def health_check():
    return {"status": "healthy"}
