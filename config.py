"""
Configuration for the Pulumi program and for the convergence CLI.

Both views are typed and immutable and built from a ``(key, parser)`` table:

- ``StackConfig`` reads pulumi.Config() (Pulumi.<stack>.yaml or
  ``pulumi config set``). Used by __main__.main() to locate the catalog, tag
  resources, configure the edge router and toggle registrar delegation.
- ``EngineSettings`` reads ``STATIC_SITE_*`` variables from a mapping handed
  in by the caller (the CLI passes os.environ). Every setting has a default.
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import pulumi

from convergence.errors import ConfigError


def _require_bool(config: pulumi.Config, key: str) -> bool:
    raw = config.require(key)
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes")


def _require_str(config: pulumi.Config, key: str) -> str:
    return config.require(key)


def _get_str(config: pulumi.Config, key: str) -> str | None:
    return config.get(key)


def _get_mapping(config: pulumi.Config, key: str) -> dict[str, str]:
    return {str(k): str(v) for k, v in (config.get_object(key) or {}).items()}


# (key, parser); parser receives (config, key) and returns value.
_CONFIG_SPEC: list[tuple[str, Callable[[pulumi.Config, str], Any]]] = [
    ("project_name", _require_str),
    ("repository", _require_str),
    ("owner", _require_str),
    ("domains_root", _require_str),
    ("manage_registration", _require_bool),
    ("publish_environment", _require_str),
    ("typo_domains", _get_mapping),
    ("deployment_id", _get_str),
]


@dataclass(frozen=True)
class StackConfig:
    """
    Stack configuration from Pulumi config.

    Attributes:
        project_name: Project tag value (required).
        repository: ``owner/repo`` identity of the catalog (required).
        owner: Owner tag value (required).
        domains_root: Directory holding the domain declarations (required).
        manage_registration: Whether to point the registrar at the zone (required).
        publish_environment: Environment whose tuples publish registry
            parameters (required).
        typo_domains: Typo domain -> canonical domain for the edge router.
        deployment_id: DeploymentId tag value; the stack name when unset.
    """

    project_name: str
    repository: str
    owner: str
    domains_root: str
    manage_registration: bool
    publish_environment: str
    typo_domains: dict[str, str] = field(default_factory=dict)
    deployment_id: str | None = None

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config) -> "StackConfig":
        """
        Build StackConfig from pulumi.Config(). Keys parsed with ``_require_*`` are required.
        """
        kwargs = {key: parser(config, key) for key, parser in _CONFIG_SPEC}
        return cls(**kwargs)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_positive_float(raw: str) -> float:
    value = float(raw)
    if value <= 0:
        raise ValueError(f"must be positive: {raw!r}")
    return value


def _parse_positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError(f"must be positive: {raw!r}")
    return value


def _parse_typo_domains(raw: str) -> dict[str, str]:
    """``typo.com=canonical.com,other.com=canonical.com``."""
    mapping = {}
    for item in filter(None, (part.strip() for part in raw.split(","))):
        typo, sep, canonical = item.partition("=")
        if not sep or not typo.strip() or not canonical.strip():
            raise ValueError(f"expected typo=canonical, got {item!r}")
        mapping[typo.strip().lower()] = canonical.strip().lower()
    return mapping


def _optional(raw: str) -> str | None:
    return raw.strip() or None


ENV_PREFIX = "STATIC_SITE_"

# (field, parser); the variable is ENV_PREFIX + field.upper().
_ENV_SPEC: list[tuple[str, Callable[[str], Any]]] = [
    ("domains_root", Path),
    ("state_dir", Path),
    ("backend", str.strip),
    ("lock_lease_seconds", _parse_positive_float),
    ("lock_attempts", _parse_positive_int),
    ("lock_backoff_seconds", _parse_positive_float),
    ("certificate_timeout_seconds", _parse_positive_float),
    ("certificate_poll_seconds", _parse_positive_float),
    ("publish_environment", str.strip),
    ("manage_registration", _parse_bool),
    ("typo_domains", _parse_typo_domains),
    ("project_name", _optional),
    ("repository", _optional),
    ("owner", str.strip),
    ("deployment_id", _optional),
]


@dataclass(frozen=True)
class EngineSettings:
    """
    Settings of the convergence CLI.

    Attributes:
        domains_root: Directory holding the domain declarations.
        state_dir: Directory of the local backend.
        backend: Backend name ("local" or "memory").
        lock_lease_seconds: Lease of the convergence lock.
        lock_attempts: Acquisition attempts before giving up.
        lock_backoff_seconds: First retry delay; doubles per attempt.
        certificate_timeout_seconds: Bound on certificate validation.
        certificate_poll_seconds: Delay between certificate status checks.
        publish_environment: Environment whose tuples publish registry entries.
        manage_registration: Add registrar delegation to every bundle.
        typo_domains: Typo domain -> canonical domain for the edge router.
        project_name: Project tag; the repository name when unset.
        repository: ``owner/repo``; detected from git when unset.
        owner: Owner tag value.
        deployment_id: DeploymentId tag; generated per run when unset.
    """

    domains_root: Path = Path("projects")
    state_dir: Path = Path(".static-site")
    backend: str = "local"
    lock_lease_seconds: float = 3600.0
    lock_attempts: int = 5
    lock_backoff_seconds: float = 1.0
    certificate_timeout_seconds: float = 1800.0
    certificate_poll_seconds: float = 15.0
    publish_environment: str = "prd"
    manage_registration: bool = False
    typo_domains: dict[str, str] = field(default_factory=dict)
    project_name: str | None = None
    repository: str | None = None
    owner: str = "platform"
    deployment_id: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "EngineSettings":
        """
        Build EngineSettings from ``STATIC_SITE_*`` entries of ``environ``.

        Raises:
            ConfigError: a variable is present but cannot be parsed.
        """
        kwargs = {}
        for name, parser in _ENV_SPEC:
            variable = f"{ENV_PREFIX}{name.upper()}"
            if variable not in environ:
                continue
            try:
                kwargs[name] = parser(environ[variable])
            except ValueError as exc:
                raise ConfigError(f"{variable}: {exc}") from exc
        return cls(**kwargs)

    def replace(self, **changes: Any) -> "EngineSettings":
        """Copy with the non-None ``changes`` applied (CLI overrides)."""
        return dataclasses.replace(
            self, **{key: value for key, value in changes.items() if value is not None}
        )
