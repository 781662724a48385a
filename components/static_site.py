"""
One complete static site: the Pulumi rendition of the resource bundle.

Composes the per-concern components in dependency order:

zone -> certificate (challenges in the zone) -> distribution (custom
certificate) -> bucket policy -> apex/www records -> registry entries.

The registry entries depend on every resource that must exist before the
site can serve, and are retained when the stack is destroyed.

Physical identifiers are exposed as ``Output[str]`` under the same names the
registry uses, so ``__main__`` can export a deployed-domains summary.
"""

import pulumi

from components.certificate import SiteCertificate
from components.distribution import SiteDistribution
from components.dns import SiteAliases, SiteZone
from components.registry import RegistryEntries
from components.storage import SiteStorage
from convergence.catalog import DomainTuple
from convergence.registry import (
    KEY_BUCKET_ARN,
    KEY_BUCKET_NAME,
    KEY_CERTIFICATE_ARN,
    KEY_DISTRIBUTION_DOMAIN,
    KEY_DISTRIBUTION_ID,
    KEY_HOSTED_ZONE_ID,
)
from convergence.router import RouterConfig

ID = "static-site:aws:StaticSiteInfra"


class StaticSiteInfra(pulumi.ComponentResource):
    """
    Bucket, zone, certificate, distribution, DNS and registry for one tuple.
    """

    def __init__(
        self,
        domain: DomainTuple,
        tags: dict[str, str],
        router: RouterConfig | None = None,
        manage_registration: bool = False,
        publish_registry: bool = True,
        certificate_provider: pulumi.ProviderResource | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Build every resource of ``domain``.

        Args:
            domain: The (domain, environment) tuple; its key names every child.
            tags: Base tags (already merged for the tuple's environment).
            router: Edge router configuration shared across the fleet.
            manage_registration: Point the registrar at the hosted zone.
            publish_registry: Write the registry parameters for this tuple.
            certificate_provider: us-east-1 provider for ACM.
            opts: Options for the component.

        Outputs (set on self, registered for the component):
            outputs: Registry key -> Output[str] of the tuple's identifiers.
        """
        name = domain.key
        super().__init__(ID, name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)

        storage = SiteStorage(name, tags=tags, opts=child_opts)
        zone = SiteZone(
            name,
            domain_name=domain.domain_name,
            tags=tags,
            manage_registration=manage_registration,
            opts=child_opts,
        )
        certificate = SiteCertificate(
            name,
            domain_name=domain.domain_name,
            zone_id=zone.zone_id,
            tags=tags,
            certificate_provider=certificate_provider,
            opts=child_opts,
        )
        distribution = SiteDistribution(
            name,
            domain_name=domain.domain_name,
            bucket_id=storage.bucket.id,
            bucket_arn=storage.bucket_arn,
            bucket_regional_domain_name=storage.bucket_regional_domain_name,
            certificate_arn=certificate.certificate_arn,
            tags=tags,
            router=router,
            opts=child_opts,
        )
        aliases = SiteAliases(
            name,
            domain_name=domain.domain_name,
            zone_id=zone.zone_id,
            cloudfront_domain_name=distribution.cloudfront_domain_name,
            cloudfront_hosted_zone_id=distribution.cloudfront_hosted_zone_id,
            ready=[distribution.bucket_policy],
            opts=child_opts,
        )

        self.outputs: dict[str, pulumi.Output[str]] = {
            KEY_BUCKET_NAME: storage.bucket_name,
            KEY_BUCKET_ARN: storage.bucket_arn,
            KEY_DISTRIBUTION_ID: distribution.distribution_id,
            KEY_DISTRIBUTION_DOMAIN: distribution.cloudfront_domain_name,
            KEY_CERTIFICATE_ARN: certificate.certificate_arn,
            KEY_HOSTED_ZONE_ID: zone.zone_id,
        }

        # Everything the site needs to serve; the registry entries wait for it.
        self.ready: list[pulumi.Resource] = [
            certificate.validation,
            distribution.distribution,
            distribution.bucket_policy,
            *aliases.records,
        ]
        self.registry: RegistryEntries | None = None
        if publish_registry:
            self.registry = RegistryEntries(
                name,
                domain_name=domain.domain_name,
                values=self.outputs,
                tags=tags,
                ready=self.ready,
                opts=child_opts,
            )

        self.register_outputs(dict(self.outputs))
