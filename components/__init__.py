"""
Pulumi components for a fleet of static websites on AWS.

Each concern is encapsulated in its own ComponentResource for clear ownership,
testability, and reuse; ``StaticSiteInfra`` wires them for one domain tuple:

- **SiteStorage**: private, versioned, encrypted S3 origin bucket.
- **SiteZone**: Route 53 hosted zone; optional registrar delegation.
- **SiteCertificate**: DNS-validated ACM certificate (apex + www).
- **SiteDistribution**: CloudFront with OAC, edge router function, security
  headers and the bucket policy granting it read access.
- **SiteAliases**: apex A/AAAA aliases and the www CNAME.
- **RegistryEntries**: SSM parameters consumed by deployment pipelines.
"""

from components.certificate import SiteCertificate
from components.distribution import SiteDistribution
from components.dns import SiteAliases, SiteZone
from components.registry import RegistryEntries
from components.static_site import StaticSiteInfra
from components.storage import SiteStorage

__all__ = [
    "RegistryEntries",
    "SiteAliases",
    "SiteCertificate",
    "SiteDistribution",
    "SiteStorage",
    "SiteZone",
    "StaticSiteInfra",
]
