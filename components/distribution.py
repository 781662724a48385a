"""
CloudFront delivery for one static site: OAC, edge router, security headers,
distribution and the bucket policy that lets only this distribution read.

The edge router is a CloudFront Function attached on viewer-request. Its
source is rendered from the router configuration, so typo domains and the
www alias redirect to the canonical apex and directory paths get their
index document. 403 and 404 from the origin both surface as /404.html with
status 404. The bucket policy is created after the distribution because it
names the distribution's ARN; DNS records should depend on
``bucket_policy`` so a name never resolves before the origin is readable.
"""

import pulumi
import pulumi_aws as aws

from components._helpers import sanitize_function_name, subdomain
from convergence.bundle import (
    CACHE_TTL,
    DEFAULT_ROOT_OBJECT,
    ERROR_RESPONSES,
    ORIGIN_ID,
    PRICE_CLASS,
    SECURITY_HEADERS,
    bucket_policy_document,
)
from convergence.router import RouterConfig, render_function_code

ID: str = "static-site:aws:SiteDistribution"


class SiteDistribution(pulumi.ComponentResource):
    """
    CloudFront distribution (OAC, HTTPS only, custom certificate) in front of
    a private bucket.

    Resources: OriginAccessControl, Function, ResponseHeadersPolicy,
    Distribution, BucketPolicy.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        bucket_id: pulumi.Input[str],
        bucket_arn: pulumi.Input[str],
        bucket_regional_domain_name: pulumi.Input[str],
        certificate_arn: pulumi.Input[str],
        tags: dict[str, str],
        router: RouterConfig | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the distribution and grant it read access to the bucket.

        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            domain_name: Apex domain; apex and www are the distribution aliases.
            bucket_id: Origin bucket id.
            bucket_arn: Origin bucket ARN (for the bucket policy).
            bucket_regional_domain_name: Origin host.
            certificate_arn: Validated us-east-1 certificate.
            tags: Tags applied to the distribution.
            router: Edge router configuration (typo domains, alias prefix).
            opts: Options for the component (e.g. parent).

        Outputs (set on self, registered for the component):
            distribution_id: CloudFront distribution id.
            distribution_arn: CloudFront distribution ARN.
            cloudfront_domain_name: Distribution host (alias and CNAME target).
            cloudfront_hosted_zone_id: Hosted zone id for alias records.
        """
        super().__init__(ID, name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)
        router = router or RouterConfig()

        # retain_on_delete=True avoids AWS 409 OriginAccessControlInUse on destroy:
        # AWS may still reference the OAC briefly after the distribution is gone.
        oac = aws.cloudfront.OriginAccessControl(
            resource_name=f"{name}-oac",
            origin_access_control_origin_type="s3",
            signing_behavior="always",
            signing_protocol="sigv4",
            opts=pulumi.ResourceOptions(parent=self, retain_on_delete=True),
        )

        self.router_function = aws.cloudfront.Function(
            resource_name=f"{name}-router",
            name=sanitize_function_name(name),
            runtime="cloudfront-js-2.0",
            comment=f"Edge router for {domain_name}",
            code=render_function_code(router),
            publish=True,
            opts=child_opts,
        )

        headers_policy = aws.cloudfront.ResponseHeadersPolicy(
            resource_name=f"{name}-security-headers",
            name=f"{name}-security-headers",
            comment=f"Security headers for {domain_name}",
            security_headers_config=SECURITY_HEADERS,
            opts=child_opts,
        )

        origins = [
            aws.cloudfront.DistributionOriginArgs(
                domain_name=bucket_regional_domain_name,
                origin_id=ORIGIN_ID,
                origin_access_control_id=oac.id,
            )
        ]

        # ForwardedValues is required by the API when not using a cache policy.
        forwarded_values = aws.cloudfront.DistributionDefaultCacheBehaviorForwardedValuesArgs(
            query_string=False,
            cookies=aws.cloudfront.DistributionDefaultCacheBehaviorForwardedValuesCookiesArgs(
                forward="none",
            ),
        )
        default_cache_behavior = aws.cloudfront.DistributionDefaultCacheBehaviorArgs(
            target_origin_id=ORIGIN_ID,
            viewer_protocol_policy="redirect-to-https",
            allowed_methods=["GET", "HEAD", "OPTIONS"],
            cached_methods=["GET", "HEAD"],
            compress=True,
            forwarded_values=forwarded_values,
            response_headers_policy_id=headers_policy.id,
            function_associations=[
                aws.cloudfront.DistributionDefaultCacheBehaviorFunctionAssociationArgs(
                    event_type="viewer-request",
                    function_arn=self.router_function.arn,
                )
            ],
            **CACHE_TTL,
        )

        custom_error_responses = [
            aws.cloudfront.DistributionCustomErrorResponseArgs(**response)
            for response in ERROR_RESPONSES
        ]

        restrictions = aws.cloudfront.DistributionRestrictionsArgs(
            geo_restriction=aws.cloudfront.DistributionRestrictionsGeoRestrictionArgs(
                restriction_type="none",
            ),
        )

        viewer_certificate = aws.cloudfront.DistributionViewerCertificateArgs(
            acm_certificate_arn=certificate_arn,
            ssl_support_method="sni-only",
            minimum_protocol_version="TLSv1.2_2021",
        )

        # Explicit depends_on so destroy order is correct: distribution is deleted
        # before the OAC (AWS returns 409 OriginAccessControlInUse otherwise).
        self.distribution = aws.cloudfront.Distribution(
            resource_name=f"{name}-cdn",
            enabled=True,
            is_ipv6_enabled=True,
            http_version="http2and3",
            aliases=[domain_name, subdomain(domain_name, "www")],
            default_root_object=DEFAULT_ROOT_OBJECT,
            price_class=PRICE_CLASS,
            origins=origins,
            default_cache_behavior=default_cache_behavior,
            custom_error_responses=custom_error_responses,
            restrictions=restrictions,
            viewer_certificate=viewer_certificate,
            tags=tags,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[oac]),
        )

        policy = pulumi.Output.all(bucket_arn, self.distribution.arn).apply(
            lambda args: bucket_policy_document(*args)
        )
        self.bucket_policy = aws.s3.BucketPolicy(
            resource_name=f"{name}-bucket-policy",
            bucket=bucket_id,
            policy=policy,
            opts=child_opts,
        )

        self.distribution_id: pulumi.Output[str] = self.distribution.id
        self.distribution_arn: pulumi.Output[str] = self.distribution.arn
        self.cloudfront_domain_name: pulumi.Output[str] = self.distribution.domain_name
        self.cloudfront_hosted_zone_id: pulumi.Output[str] = (
            self.distribution.hosted_zone_id
        )
        self.register_outputs(
            {
                "distribution_id": self.distribution_id,
                "distribution_arn": self.distribution_arn,
                "cloudfront_domain_name": self.cloudfront_domain_name,
                "cloudfront_hosted_zone_id": self.cloudfront_hosted_zone_id,
            }
        )
