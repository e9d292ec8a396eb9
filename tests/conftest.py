"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from captivegate.link import StaticLinkProbe
from captivegate.policy.models import RedirectPolicy
from captivegate.rules.backend import MemoryBackend
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.store import SessionStore


class FakeClock:
    """Manually advanced clock for deterministic TTL tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def test_policy_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "test_policy.yaml"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> RedirectPolicy:
    return RedirectPolicy(name="test")


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def probe() -> StaticLinkProbe:
    return StaticLinkProbe(up=True)


@pytest.fixture
def synchronizer(store, backend, probe, policy):
    sync = RuleSynchronizer(
        store, backend, probe, policy, poll_interval=0.01, probe_timeout=1.0, backoff=0
    )
    sync.attach()
    yield sync
    sync.close()
