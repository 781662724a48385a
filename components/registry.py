"""
SSM parameters that publish a site's identifiers for downstream consumers.

One String parameter per registry key under
``/static-website/infrastructure/{domain_name}/``. The parameters wait for
every resource passed as ``ready`` (distribution, bucket policy, public
records, certificate validation), so none of them exists before the whole
site has converged. They are retained on delete: ``pulumi destroy`` removes
the site first and ``static-site unpublish <domain>`` removes the entries
afterwards.
"""

import pulumi
import pulumi_aws as aws

from convergence.registry import REGISTRY_KEYS, parameter_name

ID = "static-site:aws:RegistryEntries"


class RegistryEntries(pulumi.ComponentResource):
    """
    Registry parameters for one domain.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        values: dict[str, pulumi.Input[str]],
        tags: dict[str, str],
        ready: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            domain_name: Domain the entries describe.
            values: Registry key -> value; every key of REGISTRY_KEYS is required.
            tags: Tags applied to every parameter.
            ready: Resources every parameter must wait for.
            opts: Options for the component (e.g. parent).

        Raises:
            ValueError: a registry key has no value.
        """
        missing = [key for key in REGISTRY_KEYS if key not in values]
        if missing:
            raise ValueError(f"{domain_name}: missing registry values {missing}")

        super().__init__(ID, name, None, opts)

        self.parameter_opts = pulumi.ResourceOptions(
            parent=self,
            depends_on=list(ready or []),
            retain_on_delete=True,
        )
        self.parameters = {
            key: aws.ssm.Parameter(
                resource_name=f"{name}-{key}",
                name=parameter_name(domain_name, key),
                type="String",
                value=values[key],
                tags=tags,
                opts=self.parameter_opts,
            )
            for key in REGISTRY_KEYS
        }
        self.register_outputs(
            {key: parameter.name for key, parameter in self.parameters.items()}
        )
