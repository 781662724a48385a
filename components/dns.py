"""
Route 53: the site's hosted zone, its public names and registrar delegation.

Two components because the zone is needed first (certificate challenges go
into it) while the public records come last, once the distribution can
serve. ``SiteZone`` optionally points the registered domain at the zone's
name servers; otherwise the domain must be delegated by hand.
"""

import pulumi
import pulumi_aws as aws

from components._helpers import subdomain
from convergence.bundle import WWW_RECORD_TTL

ZONE_ID = "static-site:aws:SiteZone"
ALIASES_ID = "static-site:aws:SiteAliases"


class SiteZone(pulumi.ComponentResource):
    """
    Public hosted zone for ``domain_name`` with optional registrar delegation.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        tags: dict[str, str],
        manage_registration: bool = False,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the hosted zone.

        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            domain_name: Apex domain of the zone.
            tags: Tags applied to the zone.
            manage_registration: If True, set the registered domain's name
                servers to the zone's (the domain must be registered in this
                account).
            opts: Options for the component (e.g. parent).

        Outputs (set on self, registered for the component):
            zone_id: Hosted zone id.
            name_servers: Zone name servers.
        """
        super().__init__(ZONE_ID, name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)

        self.zone = aws.route53.Zone(
            resource_name=f"{name}-zone",
            name=domain_name,
            comment=f"Managed zone for {domain_name}",
            tags=tags,
            opts=child_opts,
        )

        if manage_registration:
            aws.route53domains.RegisteredDomain(
                resource_name=f"{name}-registration",
                domain_name=domain_name,
                name_servers=self.zone.name_servers.apply(
                    lambda servers: [{"name": server} for server in servers]
                ),
                tags=tags,
                opts=child_opts,
            )

        self.zone_id: pulumi.Output[str] = self.zone.zone_id
        self.name_servers: pulumi.Output[list[str]] = self.zone.name_servers
        self.register_outputs(
            {"zone_id": self.zone_id, "name_servers": self.name_servers}
        )


class SiteAliases(pulumi.ComponentResource):
    """
    Public records: apex A/AAAA aliases and a www CNAME to the distribution.

    Pass the bucket policy in ``opts.depends_on`` (via ``ready``) so the
    names resolve only once the origin is readable.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        zone_id: pulumi.Input[str],
        cloudfront_domain_name: pulumi.Input[str],
        cloudfront_hosted_zone_id: pulumi.Input[str],
        ready: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the apex and www records.

        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            domain_name: Apex domain.
            zone_id: Hosted zone receiving the records.
            cloudfront_domain_name: Distribution host.
            cloudfront_hosted_zone_id: Distribution's alias zone id.
            ready: Resources every record must wait for.
            opts: Options for the component (e.g. parent).
        """
        super().__init__(ALIASES_ID, name, None, opts)

        record_opts = pulumi.ResourceOptions(parent=self, depends_on=ready or [])

        alias = aws.route53.RecordAliasArgs(
            name=cloudfront_domain_name,
            zone_id=cloudfront_hosted_zone_id,
            evaluate_target_health=False,
        )
        self.apex_records = [
            aws.route53.Record(
                resource_name=f"{name}-alias-apex-{record_type.lower()}",
                zone_id=zone_id,
                name=domain_name,
                type=record_type,
                aliases=[alias],
                opts=record_opts,
            )
            for record_type in ("A", "AAAA")
        ]

        self.www_record = aws.route53.Record(
            resource_name=f"{name}-alias-www",
            zone_id=zone_id,
            name=subdomain(domain_name, "www"),
            type="CNAME",
            ttl=WWW_RECORD_TTL,
            records=[cloudfront_domain_name],
            opts=record_opts,
        )

        self.records = [*self.apex_records, self.www_record]
        self.register_outputs({})
