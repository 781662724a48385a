"""
S3 origin bucket for one static site.

The bucket is private: Block Public Access is always applied, objects are
versioned and encrypted at rest, and the only reader is the CloudFront
distribution granted access later through a bucket policy (see
SiteDistribution). Outputs are ``Output[str]`` so the distribution and the
registry can consume them.
"""

import pulumi
import pulumi_aws as aws

from convergence.bundle import S3_BLOCK_PUBLIC_ACCESS

ID: str = "static-site:aws:SiteStorage"


class SiteStorage(pulumi.ComponentResource):
    """
    Versioned, encrypted, non-public S3 bucket.

    Resources: Bucket, BucketVersioning, BucketServerSideEncryptionConfiguration,
    BucketPublicAccessBlock.
    """

    def __init__(
        self,
        name: str,
        tags: dict[str, str],
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the bucket and its protection settings.

        Args:
            name: Pulumi resource name prefix (the domain tuple key).
            tags: Tags applied to the bucket.
            opts: Options for the component (e.g. parent).

        Outputs (set on self, registered for the component):
            bucket_name: Physical bucket name.
            bucket_arn: Bucket ARN.
            bucket_regional_domain_name: Origin host for CloudFront.
        """
        super().__init__(ID, name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)

        self.bucket = aws.s3.Bucket(
            resource_name=f"{name}-site",
            tags=tags,
            opts=child_opts,
        )

        aws.s3.BucketVersioning(
            resource_name=f"{name}-versioning",
            bucket=self.bucket.id,
            versioning_configuration={"status": "Enabled"},
            opts=child_opts,
        )

        aws.s3.BucketServerSideEncryptionConfiguration(
            resource_name=f"{name}-encryption",
            bucket=self.bucket.id,
            rules=[
                {
                    "apply_server_side_encryption_by_default": {
                        "sse_algorithm": "AES256",
                    },
                }
            ],
            opts=child_opts,
        )

        # Content is served only via CloudFront; the bucket can never be public.
        self.public_access_block = aws.s3.BucketPublicAccessBlock(
            resource_name=f"{name}-block-public",
            bucket=self.bucket.id,
            opts=child_opts,
            **S3_BLOCK_PUBLIC_ACCESS,
        )

        self.bucket_name: pulumi.Output[str] = self.bucket.bucket
        self.bucket_arn: pulumi.Output[str] = self.bucket.arn
        self.bucket_regional_domain_name: pulumi.Output[str] = (
            self.bucket.bucket_regional_domain_name
        )
        self.register_outputs(
            {
                "bucket_name": self.bucket_name,
                "bucket_arn": self.bucket_arn,
                "bucket_regional_domain_name": self.bucket_regional_domain_name,
            }
        )
