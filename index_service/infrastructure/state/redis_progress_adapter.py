from typing import Optional

import redis
import structlog
from pydantic import ValidationError

from index_service.application.ports.progress_port import ProgressStorePort
from index_service.domain.models import IndexProgressSnapshot

log = structlog.get_logger(__name__)

class RedisProgressAdapter(ProgressStorePort):
    """Progress snapshots as JSON at `progress:index:{doc_hash}` with a TTL."""

    key_prefix = "progress:index:"

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self._redis = client
        self.ttl_seconds = ttl_seconds
        self.log = log.bind(component="RedisProgressAdapter")

    def _key(self, doc_hash: str) -> str:
        return f"{self.key_prefix}{doc_hash}"

    def write(self, snapshot: IndexProgressSnapshot) -> None:
        self._redis.set(self._key(snapshot.doc_hash), snapshot.model_dump_json(), ex=self.ttl_seconds)

    def read(self, doc_hash: str) -> Optional[IndexProgressSnapshot]:
        raw = self._redis.get(self._key(doc_hash))
        if raw is None:
            return None
        try:
            return IndexProgressSnapshot.model_validate_json(raw)
        except ValidationError as e:
            self.log.warning("Discarding unreadable progress record", doc_hash=doc_hash, error=str(e))
            return None
