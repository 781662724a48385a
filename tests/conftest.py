"""Shared fixtures: in-memory backends, a controllable clock, a catalog on disk."""

from pathlib import Path

import pytest

from convergence.backends.memory import (
    InMemoryCloud,
    InMemoryParameterStore,
    InMemoryStateStore,
)
from convergence.bundle import BaseTags, instantiate_all
from convergence.catalog import StaticSource, scan
from convergence.credentials import Credentials, StaticCredentialProvider
from convergence.engine import ConvergenceEngine
from convergence.registry import RegistryPublisher

STATE_KEY = "static-website-infrastructure/acme-sites/state"

BASE_TAGS = BaseTags(
    project="sites",
    repository="acme/sites",
    owner="platform",
    deployed_by="deployer",
    deployment_id="run-1",
)


class FakeClock:
    """Time that only moves when something sleeps."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_bundles(*entries, tags=BASE_TAGS, **kwargs):
    domains = scan(StaticSource(entries))
    return instantiate_all(
        domains, lambda d: tags.for_environment(d.environment), **kwargs
    )


def write_declaration(root: Path, directory: str, environment: str, domain_name: str) -> Path:
    path = root / directory / environment / "domain.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f'domain_name = "{domain_name}"\n', encoding="utf-8")
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def cloud():
    return InMemoryCloud()


@pytest.fixture
def parameters():
    return InMemoryParameterStore()


@pytest.fixture
def registry(parameters):
    return RegistryPublisher(parameters)


@pytest.fixture
def engine(store, cloud, registry, clock):
    return ConvergenceEngine(
        store,
        cloud,
        registry,
        StaticCredentialProvider(Credentials("deployer")),
        state_key=STATE_KEY,
        lock_attempts=3,
        lock_backoff=0.5,
        certificate_timeout=60,
        certificate_poll=10,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def domains_root(tmp_path):
    root = tmp_path / "projects"
    root.mkdir()
    return root
