import threading
import time

import pytest

from services.blob_service import BatchUploader
from services.errors import DeadlineExceeded
from utils.deadline import Deadline


class ScriptedStore:
    """Per-key delays and failures, records every attempt and the peak concurrency."""

    def __init__(self, delays=None, failures=None):
        self.delays = delays or {}
        self.failures = failures or {}
        self.attempted = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def upload(self, path, key, deadline=None):
        with self._lock:
            self.attempted.append(key)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delays.get(key, 0))
            if key in self.failures:
                raise self.failures[key]
            return f"loc-{key}"
        finally:
            with self._lock:
                self.active -= 1


def test_success_returns_locations_in_input_order():
    store = ScriptedStore()
    result = BatchUploader(store).upload(["/tmp/a", "/tmp/b", "/tmp/c"])
    assert result == ["loc-a", "loc-b", "loc-c"]


def test_order_follows_input_not_completion():
    # earlier inputs finish last
    store = ScriptedStore(delays={"a": 0.15, "b": 0.05, "c": 0.0})
    result = BatchUploader(store, max_workers=3).upload(["/x/a", "/x/b", "/x/c"])
    assert result == ["loc-a", "loc-b", "loc-c"]


def test_empty_input_returns_empty_list_without_calling_store():
    store = ScriptedStore()
    assert BatchUploader(store).upload([]) == []
    assert store.attempted == []


def test_single_failure_is_raised():
    boom = IOError("b exploded")
    store = ScriptedStore(failures={"b": boom})
    with pytest.raises(IOError) as exc_info:
        BatchUploader(store).upload(["/x/a", "/x/b", "/x/c"])
    assert exc_info.value is boom


def test_failure_does_not_stop_other_uploads():
    store = ScriptedStore(delays={"c": 0.1}, failures={"a": RuntimeError("a failed")})
    with pytest.raises(RuntimeError):
        BatchUploader(store).upload(["/x/a", "/x/b", "/x/c"])
    assert sorted(store.attempted) == ["a", "b", "c"]


def test_first_error_by_index_wins_over_first_in_time():
    # c fails immediately, a fails later: a is reported
    err_a = ValueError("a failed")
    err_c = KeyError("c failed")
    store = ScriptedStore(delays={"a": 0.1}, failures={"a": err_a, "c": err_c})
    with pytest.raises(ValueError) as exc_info:
        BatchUploader(store, max_workers=3).upload(["/x/a", "/x/b", "/x/c"])
    assert exc_info.value is err_a


def test_concurrency_is_bounded_by_max_workers():
    keys = [f"f{i}" for i in range(8)]
    store = ScriptedStore(delays={k: 0.03 for k in keys})
    result = BatchUploader(store, max_workers=2).upload([f"/x/{k}" for k in keys])
    assert result == [f"loc-{k}" for k in keys]
    assert store.peak <= 2


def test_uploads_overlap_in_time():
    keys = ["a", "b", "c"]
    store = ScriptedStore(delays={k: 0.2 for k in keys})
    started = time.monotonic()
    BatchUploader(store, max_workers=3).upload([f"/x/{k}" for k in keys])
    assert time.monotonic() - started < 0.5


def test_expired_deadline_fails_without_uploading():
    deadline = Deadline()
    deadline.cancel()
    store = ScriptedStore()
    with pytest.raises(DeadlineExceeded):
        BatchUploader(store).upload(["/x/a", "/x/b"], deadline)
    assert store.attempted == []


def test_key_is_file_basename():
    assert BatchUploader.key_for("/tmp/req-1/abc.png") == "abc.png"


def test_max_workers_must_be_positive():
    with pytest.raises(ValueError):
        BatchUploader(ScriptedStore(), max_workers=0)


class PrefixStore(ScriptedStore):
    def upload(self, path, key, deadline=None):
        return "store://" + super().upload(path, key, deadline)[len("loc-"):]


def test_three_jpgs_scenario():
    store = PrefixStore()
    result = BatchUploader(store).upload(["/tmp/a.jpg", "/tmp/b.jpg", "/tmp/c.jpg"])
    assert result == ["store://a.jpg", "store://b.jpg", "store://c.jpg"]


def test_three_jpgs_middle_network_error():
    network_error = ConnectionError("connection reset by peer")
    store = PrefixStore(failures={"b.jpg": network_error})
    with pytest.raises(ConnectionError) as exc_info:
        BatchUploader(store).upload(["/tmp/a.jpg", "/tmp/b.jpg", "/tmp/c.jpg"])
    assert exc_info.value is network_error
