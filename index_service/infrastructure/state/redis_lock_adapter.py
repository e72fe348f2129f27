import uuid

import redis
import structlog

from index_service.application.ports.lock_port import BuildLockPort

log = structlog.get_logger(__name__)

class RedisBuildLockAdapter(BuildLockPort):
    """Build lock stored at `lock:index:{doc_hash}`, taken with SET NX EX."""

    key_prefix = "lock:index:"

    def __init__(self, client: redis.Redis):
        self._redis = client
        self.log = log.bind(component="RedisBuildLockAdapter")

    def _key(self, doc_hash: str) -> str:
        return f"{self.key_prefix}{doc_hash}"

    def acquire(self, doc_hash: str, ttl_seconds: int) -> bool:
        token = uuid.uuid4().hex
        acquired = bool(self._redis.set(self._key(doc_hash), token, nx=True, ex=ttl_seconds))
        self.log.debug("Build lock acquire attempt", doc_hash=doc_hash, acquired=acquired, ttl_seconds=ttl_seconds)
        return acquired

    def release(self, doc_hash: str) -> None:
        deleted = self._redis.delete(self._key(doc_hash))
        self.log.debug("Build lock released", doc_hash=doc_hash, existed=bool(deleted))

    def is_held(self, doc_hash: str) -> bool:
        return bool(self._redis.exists(self._key(doc_hash)))
