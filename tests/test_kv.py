from unittest.mock import MagicMock

import redis

from quiz_api.services.kv import MemoryBackend, RedisBackend

from conftest import FakeClock


def test_memory_ttl_expiry():
    clock = FakeClock()
    kv = MemoryBackend(clock=clock.timestamp)
    kv.set("k", "v", 60)
    assert kv.get("k") == "v"

    clock.advance(seconds=59)
    assert kv.get("k") == "v"
    clock.advance(seconds=1)
    assert kv.get("k") is None
    assert list(kv.scan("k")) == []


def test_memory_check_and_set_refreshes_ttl():
    clock = FakeClock()
    kv = MemoryBackend(clock=clock.timestamp)
    kv.set("k", "v", 60)
    clock.advance(seconds=50)
    assert kv.check_and_set("k", lambda cur: cur == "v", "v", 60) is True
    clock.advance(seconds=50)
    assert kv.get("k") == "v"
    assert kv.delete("k") is True
    assert kv.delete("k") is False


def test_memory_scan_by_prefix():
    kv = MemoryBackend()
    kv.set("quiz:session:a", "1", 60)
    kv.set("quiz:session:b", "2", 60)
    kv.set("other:c", "3", 60)
    assert sorted(kv.scan("quiz:session:")) == ["quiz:session:a", "quiz:session:b"]


def test_memory_check_and_set():
    kv = MemoryBackend()
    assert kv.check_and_set("k", lambda cur: cur is None, "first", 60) is True
    assert kv.check_and_set("k", lambda cur: cur is None, "second", 60) is False
    assert kv.check_and_set("k", lambda cur: cur == "first", "second", 60) is True
    assert kv.get("k") == "second"


def test_redis_set_uses_expiry():
    client = MagicMock()
    kv = RedisBackend(client)
    kv.set("k", "v", 1800)
    client.set.assert_called_once_with("k", "v", ex=1800)


def test_redis_scan_matches_prefix():
    client = MagicMock()
    client.scan_iter.return_value = iter(["quiz:session:a"])
    kv = RedisBackend(client)
    assert list(kv.scan("quiz:session:")) == ["quiz:session:a"]
    client.scan_iter.assert_called_once_with(match="quiz:session:*", count=200)


def _pipeline(client, current):
    pipe = MagicMock()
    pipe.get.return_value = current
    client.pipeline.return_value.__enter__.return_value = pipe
    return pipe


def test_redis_check_and_set_writes_in_transaction():
    client = MagicMock()
    pipe = _pipeline(client, "old")
    kv = RedisBackend(client)

    assert kv.check_and_set("k", lambda cur: cur == "old", "new", 60) is True
    pipe.watch.assert_called_once_with("k")
    pipe.multi.assert_called_once()
    pipe.set.assert_called_once_with("k", "new", ex=60)
    pipe.execute.assert_called_once()


def test_redis_check_and_set_predicate_false():
    client = MagicMock()
    pipe = _pipeline(client, "old")
    kv = RedisBackend(client)

    assert kv.check_and_set("k", lambda cur: cur is None, "new", 60) is False
    pipe.unwatch.assert_called_once()
    pipe.execute.assert_not_called()


def test_redis_check_and_set_watch_error():
    client = MagicMock()
    pipe = _pipeline(client, "old")
    pipe.execute.side_effect = redis.WatchError()
    kv = RedisBackend(client)

    assert kv.check_and_set("k", lambda cur: True, "new", 60) is False
