"""
ACM certificate for a site's apex and www names, validated through DNS.

CloudFront only accepts certificates from us-east-1, so callers in another
region pass a us-east-1 provider. One challenge record is written per subject
name into the site's hosted zone; ``allow_overwrite`` lets a retry replace a
challenge left behind by an earlier attempt. The validation resource waits
for issuance for at most 30 minutes, after which the deployment fails.
"""

import pulumi
import pulumi_aws as aws

from components._helpers import option_value, subdomain, validation_option
from convergence.bundle import VALIDATION_RECORD_TTL
from convergence.engine import CERTIFICATE_VALIDATION_TIMEOUT

ID = "static-site:aws:SiteCertificate"

VALIDATION_TIMEOUT = f"{CERTIFICATE_VALIDATION_TIMEOUT // 60}m"


class SiteCertificate(pulumi.ComponentResource):
    """
    DNS-validated certificate covering ``<domain>`` and ``www.<domain>``.

    Resources: Certificate, one Route 53 challenge Record per name,
    CertificateValidation.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        zone_id: pulumi.Input[str],
        tags: dict[str, str],
        certificate_provider: pulumi.ProviderResource | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Request the certificate and wait until it is issued.

        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            domain_name: Apex domain; www.<domain_name> is added as a SAN.
            zone_id: Hosted zone that receives the challenge records.
            tags: Tags applied to the certificate.
            certificate_provider: us-east-1 provider for ACM, if the stack
                runs elsewhere.
            opts: Options for the component (e.g. parent).

        Outputs (set on self, registered for the component):
            certificate_arn: ARN of the issued certificate. Resolves only
                after validation, so consumers are ordered behind issuance.
        """
        super().__init__(ID, name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)
        acm_opts = pulumi.ResourceOptions(parent=self, provider=certificate_provider)

        names = [domain_name, subdomain(domain_name, "www")]
        self.certificate = aws.acm.Certificate(
            resource_name=f"{name}-certificate",
            domain_name=names[0],
            subject_alternative_names=names[1:],
            validation_method="DNS",
            tags=tags,
            opts=acm_opts,
        )

        self.validation_records = []
        for label, host in zip(("apex", "www"), names):
            option = self.certificate.domain_validation_options.apply(
                lambda options, host=host: validation_option(options, host)
            )
            record = aws.route53.Record(
                resource_name=f"{name}-validation-{label}",
                zone_id=zone_id,
                name=option.apply(lambda o: option_value(o, "resource_record_name")),
                type=option.apply(lambda o: option_value(o, "resource_record_type")),
                records=[option.apply(lambda o: option_value(o, "resource_record_value"))],
                ttl=VALIDATION_RECORD_TTL,
                allow_overwrite=True,
                opts=child_opts,
            )
            self.validation_records.append(record)

        validation_opts = pulumi.ResourceOptions(
            parent=self,
            provider=certificate_provider,
            custom_timeouts=pulumi.CustomTimeouts(create=VALIDATION_TIMEOUT),
        )
        self.validation = aws.acm.CertificateValidation(
            resource_name=f"{name}-certificate-validation",
            certificate_arn=self.certificate.arn,
            validation_record_fqdns=[r.fqdn for r in self.validation_records],
            opts=validation_opts,
        )

        self.certificate_arn: pulumi.Output[str] = self.validation.certificate_arn
        self.register_outputs({"certificate_arn": self.certificate_arn})
