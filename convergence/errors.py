"""
Failure taxonomy for catalog scans and convergence runs.

Run-scoped errors (catalog, plan, lock, backend) stop the whole run.
Domain-scoped errors carry the key of the domain tuple they belong to; the
engine records them against that domain and keeps converging the others.
"""


class ConvergenceError(Exception):
    """Base class for every failure the engine reports by name."""


class ConfigError(ConvergenceError):
    """A setting is missing or cannot be parsed."""


class CatalogError(ConvergenceError):
    """Malformed or duplicate domain declarations. No partial catalog is used."""


class PlanError(ConvergenceError):
    """The resource graph references a missing node or value, or contains a cycle."""


class LockContentionError(ConvergenceError):
    """The convergence lock could not be acquired (or is no longer held)."""


class BackendUnavailableError(ConvergenceError):
    """State, lock or registry storage cannot be reached."""


class DomainError(ConvergenceError):
    """A failure confined to one domain tuple's resource graph."""

    def __init__(self, domain: str, message: str):
        super().__init__(f"{domain}: {message}")
        self.domain = domain
        self.reason = message


class ValidationTimeoutError(DomainError):
    """Certificate DNS validation did not complete within its bound."""


class ResourceConflictError(DomainError):
    """The target resource already exists outside the recorded state."""


class RegistrationRejectedError(DomainError):
    """The registrar refused the domain registration request."""


class ProviderError(DomainError):
    """A provider operation failed for any other reason."""
