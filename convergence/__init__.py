"""
Convergence engine for a fleet of static websites.

The catalog (``convergence.catalog``) says which (domain, environment) tuples
exist; ``convergence.bundle`` turns each tuple into a resource graph; the
engine (``convergence.engine``) diffs the graphs against recorded state under
a lock, applies the plan through a ``CloudProvider`` and publishes each
converged domain's identifiers through ``convergence.registry``.
"""

from convergence.errors import (
    BackendUnavailableError,
    CatalogError,
    ConfigError,
    ConvergenceError,
    DomainError,
    LockContentionError,
    PlanError,
    ProviderError,
    RegistrationRejectedError,
    ResourceConflictError,
    ValidationTimeoutError,
)

__all__ = [
    "BackendUnavailableError",
    "CatalogError",
    "ConfigError",
    "ConvergenceError",
    "DomainError",
    "LockContentionError",
    "PlanError",
    "ProviderError",
    "RegistrationRejectedError",
    "ResourceConflictError",
    "ValidationTimeoutError",
]
