import pickle
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from custom_benchmarks.cache.client import CacheConnectionError, CacheError, InstrumentedCacheClient, is_benign_error
from custom_benchmarks.cache.sizing import measure_size
from custom_benchmarks.observability.metrics import CacheStatsAccumulator


def test_get_counts_hits_and_misses(cache_backend, make_proxy) -> None:
    cache_backend.data["a"] = "alpha"
    cache = make_proxy()

    assert cache.get("a") == "alpha"
    assert cache.get("b") is None

    snap = cache.stats.snapshot()
    assert (snap.gets, snap.hits, snap.misses) == (2, 1, 1)
    assert snap.latency == 1.0
    assert snap.get_bytes == 0


def test_store_operations_count_as_sets_and_deletes(cache_backend, make_proxy) -> None:
    cache = make_proxy()

    assert cache.set("a", 1) is True
    assert cache.add("a", 2) is False
    assert cache.add("b", 2) is True
    assert cache.delete("a") is True

    snap = cache.stats.snapshot()
    assert snap.sets == 3
    assert snap.deletes == 1
    assert snap.gets == 0
    assert cache_backend.data == {"b": 2}


def test_record_size_measures_payloads(cache_backend, make_proxy) -> None:
    cache = make_proxy(record_size=True)
    payload = {"name": "widget", "tags": [1, 2, 3]}

    cache.set("raw", b"abcde", raw=True)
    cache.set("text", "héllo")
    cache.set("obj", payload)
    cache.get("obj")
    cache.get("missing")

    snap = cache.stats.snapshot()
    assert snap.set_bytes == 5 + 6 + len(pickle.dumps(payload))
    assert snap.get_bytes == len(pickle.dumps(payload))


def test_unmeasurable_value_counts_as_zero_bytes(cache_backend, make_proxy) -> None:
    cache = make_proxy(record_size=True)
    lock = threading.Lock()

    assert cache.set("lock", lock) is True

    snap = cache.stats.snapshot()
    assert snap.sets == 1
    assert snap.set_bytes == 0
    assert cache_backend.data["lock"] is lock


def test_unencodable_text_counts_as_zero_bytes(cache_backend, make_proxy) -> None:
    cache = make_proxy(record_size=True)
    text = "bad \ud800 value"

    assert cache.set("k", text) is True
    assert cache.get("k") == text

    snap = cache.stats.snapshot()
    assert (snap.sets, snap.gets, snap.hits) == (1, 1, 1)
    assert snap.set_bytes == snap.get_bytes == 0
    assert measure_size(text) == 0


def test_measure_size_skips_none() -> None:
    assert measure_size(None) is None
    assert measure_size(b"xyz") == 3


def test_get_multi_records_one_get_per_batch(cache_backend, make_proxy, op_logger) -> None:
    cache_backend.data.update({"a": b"12", "b": b"3456"})
    cache = make_proxy(record_size=True, logger=op_logger, wallclock=lambda: 12.123456)

    values = cache.get_multi(["a", "b", "c"])

    assert values == {"a": b"12", "b": b"3456"}
    snap = cache.stats.snapshot()
    assert snap.gets == 1
    assert snap.misses == 1
    assert snap.get_bytes == 6
    assert snap.latency == 0.5

    entries = [e for e in op_logger.events if e["event"] == "cache_get_multi"]
    assert [e["key"] for e in entries] == ["a", "b", "c"]
    assert {e["batch_id"] for e in entries} == {"3456"}
    assert [e["size"] for e in entries] == [2, 4, 0]


def test_get_multi_is_a_hit_when_every_key_is_found(cache_backend, make_proxy) -> None:
    cache_backend.data.update({"a": 1, "b": 2})
    cache = make_proxy()

    cache.get_multi(["a", "b"])

    snap = cache.stats.snapshot()
    assert (snap.gets, snap.hits, snap.misses) == (1, 1, 0)


def test_get_multi_without_logging_or_sizes_emits_nothing(cache_backend, make_proxy) -> None:
    cache = make_proxy()

    assert cache.get_multi(["a"]) == {}
    assert cache.stats.snapshot().get_bytes == 0


def test_operation_logging(cache_backend, make_proxy, op_logger) -> None:
    cache = make_proxy(logger=op_logger, record_size=True)

    cache.set("k", b"abc")
    cache.get("k")
    cache.add("j", b"a")
    cache.delete("k")

    assert [e["event"] for e in op_logger.events] == ["cache_set", "cache_get", "cache_add", "cache_delete"]
    assert op_logger.events[0]["size"] == 3
    assert op_logger.events[0]["elapsed"] == 0.5
    assert op_logger.events[1]["key"] == "k"


def test_connectivity_error_returns_neutral_result(cache_backend, make_proxy) -> None:
    cache_backend.fail_with = CacheConnectionError("server went away")
    reported: list[BaseException] = []
    cache = make_proxy(notify=reported.append)

    assert cache.get("k") is None
    assert cache.get_multi(["a", "b"]) == {}
    assert cache.set("k", 1) is None
    assert cache.add("k", 1) is None
    assert cache.delete("k") is None

    snap = cache.stats.snapshot()
    assert snap.gets == snap.hits == snap.misses == 0
    assert snap.sets == snap.deletes == 0
    assert snap.errors == 5
    assert snap.latency == 2.5
    assert reported == [cache_backend.fail_with] * 5


@pytest.mark.parametrize(
    "error",
    [
        CacheConnectionError("No connection to server"),
        CacheConnectionError("Lost connection to 10.0.0.1:11211"),
        ConnectionRefusedError("lost connection"),
    ],
)
def test_benign_errors_are_not_reported(make_proxy, cache_backend, error) -> None:
    cache_backend.fail_with = error
    reported: list[BaseException] = []
    cache = make_proxy(notify=reported.append)

    assert cache.get("k") is None
    assert is_benign_error(error)
    assert reported == []


def test_dev_mode_does_not_report(cache_backend, make_proxy) -> None:
    cache_backend.fail_with = CacheError("boom")
    reported: list[BaseException] = []
    cache = make_proxy(notify=reported.append, dev_mode=True)

    assert cache.get("k") is None
    assert reported == []


def test_failing_notifier_does_not_escape(cache_backend, make_proxy) -> None:
    cache_backend.fail_with = TimeoutError("timed out")

    def notify(err: BaseException) -> None:
        raise RuntimeError("pager down")

    cache = make_proxy(notify=notify)

    assert cache.get("k") is None
    assert cache.stats.snapshot().errors == 1


def test_programming_errors_propagate(cache_backend, make_proxy) -> None:
    cache_backend.fail_with = ValueError("bad key")
    cache = make_proxy()

    with pytest.raises(ValueError):
        cache.get("k")


def test_mapping_aliases_and_passthrough(cache_backend, make_proxy) -> None:
    cache = make_proxy()

    cache["k"] = "v"
    assert cache["k"] == "v"

    cache.flush_all()
    assert cache_backend.data == {}

    snap = cache.stats.snapshot()
    assert (snap.sets, snap.gets, snap.hits) == (1, 1, 1)


def test_concurrent_proxy_calls_are_all_counted(cache_backend) -> None:
    cache = InstrumentedCacheClient(cache_backend, CacheStatsAccumulator())
    workers = 8
    per_worker = 250

    def run(worker: int) -> None:
        for i in range(per_worker):
            key = f"{worker}:{i}"
            cache.set(key, i)
            cache.get(key)
            cache.delete(key)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(run, range(workers)))

    snap = cache.stats.snapshot_and_reset()
    total = workers * per_worker
    assert (snap.sets, snap.gets, snap.deletes) == (total, total, total)
    assert snap.hits == total
    assert snap.misses == 0
