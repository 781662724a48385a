"""
Static website fleet - Pulumi entrypoint.

Scans the domain catalog and builds one StaticSiteInfra per (domain,
environment) tuple:

- **Catalog**: declarations under ``domains_root``; an invalid catalog fails
  the whole preview before any resource is registered.
- **Certificates**: ACM runs through a dedicated us-east-1 provider because
  CloudFront only accepts certificates from that region.
- **Registry**: only tuples of ``publish_environment`` write SSM parameters,
  since the key schema carries no environment. The parameters are created
  after the rest of the site and retained by ``pulumi destroy``; run
  ``static-site unpublish <domain>`` once the destroy has succeeded.

Stack export: deployed_domains (per tuple key: domain_name, environment and
the registry identifiers).
"""

import pulumi
import pulumi_aws as aws

from components import StaticSiteInfra
from config import StackConfig
from convergence.bundle import BaseTags
from convergence.catalog import scan
from convergence.router import RouterConfig

CERTIFICATE_REGION = "us-east-1"


def main():
    """
    Build a StaticSiteInfra per catalog tuple and export the summary.

    Reads config (project_name, repository, owner, domains_root,
    manage_registration, publish_environment, typo_domains), tags every
    resource with the audit tags of the tuple's environment, and exports the
    identifiers of every tuple as ``deployed_domains``.
    """
    config = StackConfig.from_pulumi_config(pulumi.Config())
    domains = sorted(scan(config.domains_root), key=lambda d: d.key)
    if not domains:
        pulumi.log.warn(f"No domains declared under {config.domains_root}")

    certificate_provider = aws.Provider(
        resource_name="certificates",
        region=CERTIFICATE_REGION,
    )
    router = RouterConfig(typo_domains=config.typo_domains)
    base = BaseTags(
        project=config.project_name,
        repository=config.repository,
        owner=config.owner,
        deployed_by=aws.get_caller_identity().arn,
        deployment_id=config.deployment_id or pulumi.get_stack(),
    )

    deployed = {}
    for domain in domains:
        pulumi.log.info(f"Declaring {domain.domain_name} ({domain.environment})")
        site = StaticSiteInfra(
            domain,
            tags=base.for_environment(domain.environment),
            router=router,
            manage_registration=config.manage_registration,
            publish_registry=domain.environment == config.publish_environment,
            certificate_provider=certificate_provider,
        )
        deployed[domain.key] = {
            "domain_name": domain.domain_name,
            "environment": domain.environment,
            **site.outputs,
        }

    pulumi.export("deployed_domains", deployed)


if __name__ == "__main__":
    main()
