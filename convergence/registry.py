"""
Registry publisher: the service-discovery channel for downstream consumers.

Each converged domain exposes its resource identifiers as string parameters
under ``/static-website/infrastructure/{domain_name}/``. Consumers read these
keys instead of hard-coding identifiers. Keys are written only after the
domain's apply has fully succeeded and removed only after its destroy has.
"""

import logging
from typing import Mapping, Protocol

from convergence.errors import PlanError

logger = logging.getLogger(__name__)

REGISTRY_PREFIX = "/static-website/infrastructure"

KEY_BUCKET_NAME = "bucket-name"
KEY_BUCKET_ARN = "bucket-arn"
KEY_DISTRIBUTION_ID = "cloudfront-distribution-id"
KEY_DISTRIBUTION_DOMAIN = "cloudfront-domain-name"
KEY_CERTIFICATE_ARN = "certificate-arn"
KEY_HOSTED_ZONE_ID = "hosted-zone-id"

REGISTRY_KEYS: tuple[str, ...] = (
    KEY_BUCKET_NAME,
    KEY_BUCKET_ARN,
    KEY_DISTRIBUTION_ID,
    KEY_DISTRIBUTION_DOMAIN,
    KEY_CERTIFICATE_ARN,
    KEY_HOSTED_ZONE_ID,
)


class ParameterStore(Protocol):
    """Namespaced key-value store (e.g. a parameter service)."""

    def get_by_path(self, path: str) -> dict[str, str]: ...

    def put(self, name: str, value: str) -> None: ...

    def delete(self, name: str) -> None: ...


def domain_path(domain_name: str, prefix: str = REGISTRY_PREFIX) -> str:
    return f"{prefix}/{domain_name}/"


def parameter_name(domain_name: str, key: str, prefix: str = REGISTRY_PREFIX) -> str:
    """``/static-website/infrastructure/example.com/bucket-name``."""
    return f"{domain_path(domain_name, prefix)}{key}"


class RegistryPublisher:
    """Writes and removes the registry entries of one domain at a time."""

    def __init__(self, store: ParameterStore, prefix: str = REGISTRY_PREFIX):
        self.store = store
        self.prefix = prefix

    def read(self, domain_name: str) -> dict[str, str]:
        """Published entries of ``domain_name`` keyed by short key."""
        path = domain_path(domain_name, self.prefix)
        return {
            name[len(path):]: value
            for name, value in self.store.get_by_path(path).items()
        }

    def publish(self, domain_name: str, values: Mapping[str, str]) -> list[str]:
        """
        Write every registry key of ``domain_name``; return the keys changed.

        Raises:
            PlanError: a registry key is missing from ``values``.
        """
        missing = [key for key in REGISTRY_KEYS if not values.get(key)]
        if missing:
            raise PlanError(f"{domain_name}: missing registry values {missing}")

        current = self.read(domain_name)
        changed = []
        for key in REGISTRY_KEYS:
            value = str(values[key])
            if current.get(key) == value:
                continue
            self.store.put(parameter_name(domain_name, key, self.prefix), value)
            changed.append(key)
        if changed:
            logger.info("Published %d registry entries for %s", len(changed), domain_name)
        return changed

    def unpublish(self, domain_name: str) -> list[str]:
        """Remove every registry key of ``domain_name``; return the keys removed."""
        current = self.read(domain_name)
        removed = []
        for key in REGISTRY_KEYS:
            if key in current:
                self.store.delete(parameter_name(domain_name, key, self.prefix))
                removed.append(key)
        if removed:
            logger.info("Removed %d registry entries for %s", len(removed), domain_name)
        return removed
