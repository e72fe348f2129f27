"""Starts a Celery worker for one pipeline stage (or all of them) with its configured concurrency."""
import argparse
from typing import List, Optional

import structlog
from prometheus_client import start_http_server

from index_service.core.logging_config import setup_logging
setup_logging(role="worker")

from index_service.core.config import settings
from index_service.domain.models import PipelineStage
from index_service.tasks.celery_app import celery_app

log = structlog.get_logger(__name__)


def build_worker_argv(stage: Optional[PipelineStage]) -> List[str]:
    if stage is None:
        queues = [s.queue_name for s in PipelineStage]
        concurrency = max(settings.STAGE_CONCURRENCY.get(s.value, 1) for s in PipelineStage)
        node_name = "all@%h"
    else:
        queues = [stage.queue_name]
        concurrency = settings.STAGE_CONCURRENCY.get(stage.value, 1)
        node_name = f"{stage.value}@%h"
    return [
        "worker",
        "-Q", ",".join(queues),
        "-c", str(concurrency),
        "-n", node_name,
        "--loglevel", settings.LOG_LEVEL,
    ]


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run an index pipeline worker.")
    parser.add_argument("--stage", choices=[s.value for s in PipelineStage],
                        help="Consume only this stage's queue. Defaults to all queues.")
    parser.add_argument("--metrics-port", type=int, default=settings.WORKER_METRICS_PORT)
    args = parser.parse_args(argv)

    stage = PipelineStage(args.stage) if args.stage else None
    worker_argv = build_worker_argv(stage)
    if args.metrics_port:
        start_http_server(args.metrics_port)
    log.info("Starting index worker", stage=args.stage or "all", argv=worker_argv, metrics_port=args.metrics_port)
    celery_app.worker_main(worker_argv)


if __name__ == "__main__":
    main()
