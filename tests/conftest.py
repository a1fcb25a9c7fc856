# tests/conftest.py — v2
"""Shared test fixtures for all unit tests.

Provides a small German funding-program dataset, a controllable clock,
in-memory caches without background threads, and engines wired to them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fundmatch.cache.memory_store import MemoryCacheStore
from fundmatch.config.settings import Settings
from fundmatch.core.models import FundingProgram
from fundmatch.engine.relevance_engine import RelevanceEngine


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# === FIXTURES: Sample data ===


@pytest.fixture
def bavarian_playground() -> FundingProgram:
    return FundingProgram(
        name="Bayern Spielplatzförderung",
        federalStates=["BY"],
        type=["playground"],
        measures=["newBuild"],
        fundingRate="bis 80%",
    )


@pytest.fixture
def efre_program() -> FundingProgram:
    return FundingProgram(
        name="EFRE Spielplatzmodernisierung",
        federalStates=["all"],
        description="EU-Förderung über EFRE",
        fundingRate="50-70%",
    )


@pytest.fixture
def excluded_program() -> FundingProgram:
    return FundingProgram(
        name="Digitalisierung Hochschulen",
        federalStates=["all"],
        type=["research"],
        fundingRate="100%",
    )


@pytest.fixture
def national_foundation() -> FundingProgram:
    return FundingProgram(
        name="Stiftung Jugendräume",
        federalStates=["all"],
        type=["youth"],
        measures=["equipment"],
        fundingRate="10.000 EUR",
    )


@pytest.fixture
def multi_state_program() -> FundingProgram:
    return FundingProgram(
        name="Nord-Kooperation Spielräume",
        federalStates=["HH", "SH"],
        type=["playground"],
        measures=["renovation"],
        fundingRate="60%",
    )


@pytest.fixture
def sample_programs(
    bavarian_playground: FundingProgram,
    efre_program: FundingProgram,
    excluded_program: FundingProgram,
    national_foundation: FundingProgram,
    multi_state_program: FundingProgram,
) -> list[FundingProgram]:
    """Five programs covering every relevance level."""
    return [
        bavarian_playground,
        efre_program,
        excluded_program,
        national_foundation,
        multi_state_program,
    ]


# === FIXTURES: Settings, cache, engine ===


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cache_max_size=100,
        hot_program_limit=10,
        cache_cleanup_interval_seconds=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock):
    store = MemoryCacheStore(
        max_size=100,
        default_ttl_seconds=3600,
        cleanup_interval_seconds=0,
        clock=clock,
    )
    yield store
    store.destroy()


@pytest.fixture
def engine(sample_programs, cache, settings):
    eng = RelevanceEngine(sample_programs, cache=cache, settings=settings, engine_id="test")
    yield eng
    eng.destroy()
