"""
Interface to the cloud provider's resource APIs.

The engine hands each provider call a node together with its resolved inputs
(every Ref replaced by a concrete value) and records whatever outputs come
back. Providers report failures with the domain-scoped errors of
``convergence.errors``: ResourceConflictError when a create finds the
resource already present, RegistrationRejectedError when the registrar
refuses, ProviderError for anything else.
"""

from typing import Any, Protocol

from convergence.graph import ResourceNode
from convergence.state import ResourceRecord

CERTIFICATE_ISSUED = "ISSUED"
CERTIFICATE_PENDING = "PENDING_VALIDATION"
CERTIFICATE_FAILED = "FAILED"


class CloudProvider(Protocol):
    def create(self, node: ResourceNode, inputs: dict[str, Any]) -> dict[str, Any]:
        """Create the resource and return its outputs."""
        ...

    def update(
        self, record: ResourceRecord, node: ResourceNode, inputs: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the resource in place and return its outputs."""
        ...

    def delete(self, record: ResourceRecord) -> None:
        """Delete the resource; deleting one that is already gone is not an error."""
        ...

    def certificate_status(self, certificate_arn: str) -> str:
        """Current validation status, e.g. ISSUED or PENDING_VALIDATION."""
        ...
