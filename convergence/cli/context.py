"""Application context management for the CLI."""

import uuid
from dataclasses import dataclass, field
from functools import cached_property
from typing import Mapping

from config import EngineSettings
from convergence.backends import Backend, build_backend
from convergence.bundle import BaseTags, ResourceBundle, instantiate_all
from convergence.catalog import DomainTuple, scan
from convergence.credentials import CredentialProvider, EnvironmentCredentialProvider
from convergence.engine import ConvergenceEngine
from convergence.registry import RegistryPublisher
from convergence.repository import Repository, detect, parse_slug
from convergence.router import RouterConfig


@dataclass
class AppContext:
    """
    Everything a command needs, built lazily so that commands which never
    touch the backend (``create-domain``) work without one.
    """

    settings: EngineSettings
    environ: Mapping[str, str] = field(default_factory=dict)
    deployment_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @cached_property
    def repository(self) -> Repository:
        if self.settings.repository:
            return parse_slug(self.settings.repository)
        return detect()

    @cached_property
    def credentials(self) -> CredentialProvider:
        return EnvironmentCredentialProvider(self.environ)

    @cached_property
    def backend(self) -> Backend:
        return build_backend(self.settings.backend, self.settings.state_dir)

    @cached_property
    def registry(self) -> RegistryPublisher:
        return RegistryPublisher(self.backend.parameters)

    @cached_property
    def engine(self) -> ConvergenceEngine:
        s = self.settings
        return ConvergenceEngine(
            self.backend.store,
            self.backend.cloud,
            self.registry,
            self.credentials,
            state_key=self.repository.state_key,
            lease_seconds=s.lock_lease_seconds,
            lock_attempts=s.lock_attempts,
            lock_backoff=s.lock_backoff_seconds,
            certificate_timeout=s.certificate_timeout_seconds,
            certificate_poll=s.certificate_poll_seconds,
            publish_environment=s.publish_environment,
        )

    def bundles(self, domains: list[str] | None = None) -> list[ResourceBundle]:
        """
        Scan the catalog and instantiate a bundle per tuple.

        Args:
            domains: Tuple keys or domain names to keep; all tuples when empty.

        Raises:
            CatalogError: the catalog is invalid.
            ConfigError: no deployer identity can be resolved.
        """
        s = self.settings
        tuples = scan(s.domains_root)
        if domains:
            wanted = set(domains)
            tuples = frozenset(
                t for t in tuples if t.key in wanted or t.domain_name in wanted
            )

        base = BaseTags(
            project=s.project_name or self.repository.name,
            repository=self.repository.slug,
            owner=s.owner,
            deployed_by=self.credentials.resolve().identity,
            deployment_id=s.deployment_id or self.deployment_id,
        )

        def tags_for(domain: DomainTuple) -> dict[str, str]:
            return base.for_environment(domain.environment)

        return instantiate_all(
            tuples,
            tags_for,
            router=RouterConfig(typo_domains=dict(s.typo_domains)),
            manage_registration=s.manage_registration,
        )


def build_context(settings: EngineSettings, environ: Mapping[str, str]) -> AppContext:
    """Build the application context from resolved settings and the environment."""
    return AppContext(settings=settings, environ=dict(environ))
