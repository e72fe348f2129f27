from unittest.mock import ANY, MagicMock

from index_service.domain.models import IndexProgressSnapshot, ProgressPhase
from index_service.infrastructure.state.redis_lock_adapter import RedisBuildLockAdapter
from index_service.infrastructure.state.redis_progress_adapter import RedisProgressAdapter

DOC = "a" * 64


def test_lock_acquire_uses_set_nx_with_ttl():
    client = MagicMock()
    client.set.return_value = True
    lock = RedisBuildLockAdapter(client)

    assert lock.acquire(DOC, 1800) is True
    client.set.assert_called_once_with(f"lock:index:{DOC}", ANY, nx=True, ex=1800)


def test_lock_acquire_reports_contention():
    client = MagicMock()
    client.set.return_value = None
    assert RedisBuildLockAdapter(client).acquire(DOC, 30) is False


def test_lock_release_and_probe():
    client = MagicMock()
    client.exists.return_value = 1
    lock = RedisBuildLockAdapter(client)

    lock.release(DOC)
    assert lock.is_held(DOC) is True
    client.delete.assert_called_once_with(f"lock:index:{DOC}")


def test_progress_write_sets_ttl():
    client = MagicMock()
    store = RedisProgressAdapter(client, ttl_seconds=43200)
    snapshot = IndexProgressSnapshot.build(DOC, ProgressPhase.MANIFEST, 30)

    store.write(snapshot)

    client.set.assert_called_once_with(f"progress:index:{DOC}", snapshot.model_dump_json(), ex=43200)


def test_progress_read_round_trip():
    client = MagicMock()
    snapshot = IndexProgressSnapshot.build(DOC, ProgressPhase.EMBEDDING, 55.5, batches_done=2, total_batches=4)
    client.get.return_value = snapshot.model_dump_json().encode("utf-8")

    restored = RedisProgressAdapter(client, ttl_seconds=10).read(DOC)

    assert restored == snapshot


def test_progress_read_missing_or_garbage():
    client = MagicMock()
    store = RedisProgressAdapter(client, ttl_seconds=10)

    client.get.return_value = None
    assert store.read(DOC) is None

    client.get.return_value = b'{"phase": "sideways"}'
    assert store.read(DOC) is None
