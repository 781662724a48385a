"""
Storage and provider backends selectable by name.

- **memory**: everything in process; state is lost when the process exits.
- **local**: state, lock, registry and simulated resources as JSON files in
  one directory.

Adapters for real provider APIs implement the same three protocols
(StateStore, ParameterStore, CloudProvider) and plug in through ``Backend``.
"""

from dataclasses import dataclass
from pathlib import Path

from convergence.backends.local import FileParameterStore, FileStateStore, LocalCloud
from convergence.backends.memory import (
    InMemoryCloud,
    InMemoryParameterStore,
    InMemoryStateStore,
)
from convergence.errors import BackendUnavailableError, ConfigError
from convergence.provider import CloudProvider
from convergence.registry import ParameterStore
from convergence.state import StateStore

BACKENDS = ("local", "memory")


@dataclass(frozen=True)
class Backend:
    store: StateStore
    cloud: CloudProvider
    parameters: ParameterStore


def build_backend(name: str, state_dir: Path | str) -> Backend:
    """
    Construct the named backend.

    Raises:
        ConfigError: unknown backend name.
        BackendUnavailableError: the local state directory cannot be created.
    """
    if name == "memory":
        return Backend(InMemoryStateStore(), InMemoryCloud(), InMemoryParameterStore())
    if name == "local":
        directory = Path(state_dir)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendUnavailableError(f"cannot create {directory}: {exc}") from exc
        return Backend(
            FileStateStore(directory),
            LocalCloud(directory / "resources.json"),
            FileParameterStore(directory / "parameters.json"),
        )
    raise ConfigError(f"unknown backend {name!r}; expected one of {', '.join(BACKENDS)}")


__all__ = [
    "BACKENDS",
    "Backend",
    "FileParameterStore",
    "FileStateStore",
    "InMemoryCloud",
    "InMemoryParameterStore",
    "InMemoryStateStore",
    "LocalCloud",
    "build_backend",
]
