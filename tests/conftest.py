"""Shared fixtures: a controllable clock and a service over tmp_path."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from convcache.cache.service import CacheService
from convcache.config import CacheConfig


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def config(base_dir: Path) -> CacheConfig:
    return CacheConfig(cache_dir=base_dir, update_interval=3)


@pytest.fixture
def service(config: CacheConfig, clock: FakeClock) -> CacheService:
    return CacheService(config, clock=clock)
