from __future__ import annotations

import pytest

from lms_api.errors import LookupStoreError
from lms_api.lookup_cache import LookupCache
from lms_api.lookup_validator import LookupValidator


class CountingSource:
    def __init__(self, rows: dict[str, list[str]]):
        self.rows = rows
        self.calls: list[str] = []

    def query_active(self, category: str):
        self.calls.append(category)
        return [{"key": k} for k in self.rows.get(category, [])]


class BrokenSource:
    def query_active(self, category: str):
        raise ConnectionError("db down")


def test_is_valid_fills_cache_once_then_serves_hits(fake_clock):
    source = CountingSource({"activity-event": ["content-viewed", "content-started"]})
    validator = LookupValidator(cache=LookupCache(clock=fake_clock), source=source)

    assert validator.is_valid("activity-event", "content-viewed") is True
    assert validator.is_valid("activity-event", "bogus") is False
    assert validator.is_valid("activity-event", "content-started") is True
    assert source.calls == ["activity-event"]


def test_expired_entry_triggers_one_new_query(fake_clock):
    source = CountingSource({"report-type": ["enrollment-summary"]})
    validator = LookupValidator(cache=LookupCache(ttl_seconds=300, clock=fake_clock), source=source)

    validator.get_valid_keys("report-type")
    fake_clock.advance(301)
    source.rows["report-type"] = ["enrollment-summary", "course-completion"]

    assert validator.is_valid("report-type", "course-completion") is True
    assert source.calls == ["report-type", "report-type"]


def test_invalidate_forces_refresh(fake_clock):
    source = CountingSource({"activity-event": ["content-viewed"]})
    validator = LookupValidator(cache=LookupCache(clock=fake_clock), source=source)
    assert validator.is_valid("activity-event", "content-completed") is False

    source.rows["activity-event"].append("content-completed")
    validator.invalidate("activity-event")

    assert validator.is_valid("activity-event", "content-completed") is True
    assert len(source.calls) == 2


def test_unknown_category_is_cached_as_empty(fake_clock):
    source = CountingSource({})
    validator = LookupValidator(cache=LookupCache(clock=fake_clock), source=source)
    assert validator.get_valid_keys("nope") == frozenset()
    assert validator.is_valid("nope", "x") is False
    assert source.calls == ["nope"]


def test_store_failure_propagates_as_lookup_store_error_and_caches_nothing(fake_clock):
    cache = LookupCache(clock=fake_clock)
    validator = LookupValidator(cache=cache, source=BrokenSource())

    with pytest.raises(LookupStoreError) as exc_info:
        validator.is_valid("activity-event", "content-viewed")

    assert exc_info.value.http_status == 503
    assert exc_info.value.retryable is True
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert cache.stats()["size"] == 0
