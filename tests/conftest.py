"""Shared fixtures for the release tracker tests."""

from datetime import datetime, timedelta, timezone

import pytest

from release_tracker.application.domain import (
    Market,
    ReleaseProvider,
    WeekDataset,
    WeekIdentifier,
)
from release_tracker.application.service import ReleaseWindowService
from release_tracker.application.transition import WeekTransitionEngine
from release_tracker.application.week_calendar import week_identifier
from release_tracker.infrastructure.cache_store import FileCacheStore
from release_tracker.infrastructure.retry import ClassifiedRetryPolicy
from release_tracker.infrastructure.window_store import FileWindowStore

# Monday of ISO week 2024-51.
MONDAY_W51 = datetime(2024, 12, 16, 9, 0, tzinfo=timezone.utc)


def release_payload(*titles):
    return {
        "platforms": [
            {
                "id": "netflix",
                "name": "Netflix",
                "releases": [{"title": title} for title in titles],
            }
        ]
    }


class FakeClock:
    """A settable clock shared by the stores and the service."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


class ScriptedProvider(ReleaseProvider):
    """
    Returns or raises queued outcomes in order, then falls back to `default`.

    Without a default, each week gets a one-release payload named after its
    Monday. Markets listed in `failures` always raise their error.
    """

    def __init__(self, *outcomes, default=None, failures=None):
        self.outcomes = list(outcomes)
        self.default = default
        self.failures = failures or {}
        self.calls = []

    @property
    def called_weeks(self):
        return [str(week_identifier(week_range.start)) for _, week_range in self.calls]

    async def fetch_releases(self, market, week_range):
        self.calls.append((market.id, week_range))

        if market.id in self.failures:
            raise self.failures[market.id]

        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.default is not None:
            outcome = self.default
        else:
            outcome = release_payload(f"Release {week_range.start.date().isoformat()}")

        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock(MONDAY_W51)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def payload_factory():
    """Builds a release payload holding the given titles."""
    return release_payload


@pytest.fixture
def make_dataset():
    """Builds a populated (or, with titles=None, empty) dataset for a week."""

    def _make(week, market="us", titles=("Release",), generated_at=None):
        week_id = WeekIdentifier.parse(week) if isinstance(week, str) else week
        if titles is None:
            return WeekDataset.placeholder(market, week_id)
        return WeekDataset(
            id=week_id,
            range=week_id.range(),
            market=market,
            generated_at=generated_at or week_id.range().start + timedelta(days=2),
            payload=release_payload(*titles),
        )

    return _make


@pytest.fixture
def markets():
    return [
        Market(id="us", name="United States", platforms=("Netflix", "Prime Video")),
        Market(id="india", name="India", platforms=("JioHotstar", "ZEE5")),
    ]


@pytest.fixture
def cache_store(tmp_path, clock):
    return FileCacheStore(tmp_path / "cache", ttl_hours=24, clock=clock)


@pytest.fixture
def window_store(tmp_path, clock):
    return FileWindowStore(tmp_path / "data", archive_limit=52, clock=clock)


@pytest.fixture
def engine(window_store):
    return WeekTransitionEngine(window_store)


@pytest.fixture
def retry_policy(recording_sleep):
    return ClassifiedRetryPolicy(sleep=recording_sleep)


@pytest.fixture
def provider_factory():
    return ScriptedProvider


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def make_service(cache_store, window_store, engine, retry_policy, markets, clock):
    """Builds a service around the shared stores and the given provider."""

    def _make(provider, **kwargs):
        return ReleaseWindowService(
            provider=provider,
            cache_store=cache_store,
            window_store=window_store,
            transition_engine=engine,
            retry_policy=retry_policy,
            markets=markets,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service, provider):
    return make_service(provider)
