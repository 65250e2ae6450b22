"""
Shared fixtures: in-memory and SQLite blob stores, job stores, fake generation clients.
"""

import json

import pytest

from backend.app.generation import GenerationResult
from backend.app.jobs import JobStore
from backend.app.storage import BlobStore, SqlBlobStore, StoreError


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs = {}
        self.writes = []
        self.fail_reads = False
        self.fail_writes = False

    def get_json(self, key):
        if self.fail_reads:
            raise StoreError("store unavailable")
        value = self.blobs.get(key)
        return json.loads(json.dumps(value)) if value is not None else None

    def set_json(self, key, value):
        if self.fail_writes:
            raise StoreError("store unavailable")
        self.writes.append(key)
        self.blobs[key] = json.loads(json.dumps(value))


class LaggingBlobStore(MemoryBlobStore):
    """Selected reads of each key miss, like an eventually consistent store.

    ``miss_reads`` holds 1-based read counts per key; the default misses the first.
    """

    def __init__(self, miss_reads=(1,)):
        super().__init__()
        self.miss_reads = set(miss_reads)
        self._reads = {}

    def get_json(self, key):
        self._reads[key] = self._reads.get(key, 0) + 1
        if self._reads[key] in self.miss_reads:
            return None
        return super().get_json(key)


class FakeGenerationClient:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.payloads = []

    def generate(self, payload):
        self.payloads.append(payload)
        if self.exc:
            raise self.exc
        return self.result


@pytest.fixture
def memory_store():
    return MemoryBlobStore()


@pytest.fixture
def lagging_store():
    return LaggingBlobStore()


@pytest.fixture
def sql_store(tmp_path):
    return SqlBlobStore(f"sqlite:///{tmp_path / 'jobs.sqlite'}")


@pytest.fixture
def jobs(memory_store):
    return JobStore(memory_store)


@pytest.fixture
def fake_client():
    """Build a fake client returning ``text``, an ``error`` object, or raising ``exc``."""

    def make(text=None, error=None, exc=None):
        return FakeGenerationClient(GenerationResult(text=text, error=error), exc=exc)

    return make


@pytest.fixture
def reread_miss_store():
    """Misses the second read of each key: the re-read before a terminal write."""
    return LaggingBlobStore(miss_reads=(2,))
