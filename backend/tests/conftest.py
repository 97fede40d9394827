from __future__ import annotations

import pytest

from backend.src.config import Settings
from backend.tests.fakes import (
    FakeCatalog,
    FakeFetcher,
    FakeHistory,
    FakeMetadataListener,
    FakePushProvider,
    FakeSnapshotCache,
)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        fetch_gateway_url="http://adapter.test",
        fetch_attempt_timeout_seconds=0.5,
        fetch_timeout_seconds=1.0,
        fetch_max_retries=3,
        fetch_max_concurrency=4,
        push_max_retries=3,
        notification_thread_id="price-alerts",
        currency_label="KRW",
        admin_api_token="test-admin-token",
    )


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def cache() -> FakeSnapshotCache:
    return FakeSnapshotCache()


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture()
def push_provider() -> FakePushProvider:
    return FakePushProvider()


@pytest.fixture()
def metadata_listener() -> FakeMetadataListener:
    return FakeMetadataListener()
