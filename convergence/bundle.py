"""
Resource bundle template: the full resource set for one domain tuple.

``instantiate`` is pure. Every physical name derives from the tuple key
(``{safe_name}-{environment}``), so bundles never collide once the catalog
has rejected safe-name collisions. Dependency edges encode the ordering
constraints: zone -> certificate -> validation records -> certificate
validation -> distribution -> bucket policy -> alias records.

The policy constants (cache TTLs, error mapping, security headers, price
class) are shared with the Pulumi components so both paths build the same
thing.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from convergence.catalog import DomainTuple
from convergence.graph import Ref, ResourceGraph, ResourceKind, ResourceNode
from convergence.registry import (
    KEY_BUCKET_ARN,
    KEY_BUCKET_NAME,
    KEY_CERTIFICATE_ARN,
    KEY_DISTRIBUTION_DOMAIN,
    KEY_DISTRIBUTION_ID,
    KEY_HOSTED_ZONE_ID,
)
from convergence.router import RouterConfig, render_function_code

MANAGED_BY = "static-site-convergence"

# Excluded from diffs: it changes on every run by construction.
VOLATILE_TAGS: frozenset[str] = frozenset({"DeploymentId"})

# Applied to every bucket so it can never be made public.
S3_BLOCK_PUBLIC_ACCESS: dict[str, bool] = {
    "block_public_acls": True,
    "block_public_policy": True,
    "ignore_public_acls": True,
    "restrict_public_buckets": True,
}

CACHE_TTL: dict[str, int] = {
    "min_ttl": 0,
    "default_ttl": 86400,
    "max_ttl": 31536000,
}

PRICE_CLASS = "PriceClass_100"
ORIGIN_ID = "s3-origin"
DEFAULT_ROOT_OBJECT = "index.html"
ERROR_DOCUMENT = "/404.html"

# 403 and 404 both surface as 404 so clients cannot probe object existence.
ERROR_RESPONSES: list[dict[str, Any]] = [
    {
        "error_code": code,
        "response_code": 404,
        "response_page_path": ERROR_DOCUMENT,
        "error_caching_min_ttl": 10,
    }
    for code in (403, 404)
]

SECURITY_HEADERS: dict[str, Any] = {
    "strict_transport_security": {
        "access_control_max_age_sec": 63072000,
        "include_subdomains": True,
        "preload": True,
        "override": True,
    },
    "content_type_options": {"override": True},
    "frame_options": {"frame_option": "DENY", "override": True},
    "referrer_policy": {
        "referrer_policy": "strict-origin-when-cross-origin",
        "override": True,
    },
    "xss_protection": {"protection": True, "mode_block": True, "override": True},
}

VALIDATION_RECORD_TTL = 60
WWW_RECORD_TTL = 300

ROLE_BUCKET = "bucket"
ROLE_ZONE = "zone"
ROLE_CERTIFICATE = "certificate"
ROLE_VALIDATION = "certificate-validation"
ROLE_ORIGIN_ACCESS = "origin-access"
ROLE_EDGE_FUNCTION = "edge-function"
ROLE_HEADERS_POLICY = "headers-policy"
ROLE_DISTRIBUTION = "distribution"
ROLE_BUCKET_POLICY = "bucket-policy"
ROLE_ALIAS_A = "alias-apex-a"
ROLE_ALIAS_AAAA = "alias-apex-aaaa"
ROLE_ALIAS_WWW = "alias-www"
ROLE_REGISTRATION = "registration"


@dataclass(frozen=True)
class BaseTags:
    """
    Fixed audit tags carried by every resource.

    Attributes:
        project: Project name (repository name by default).
        repository: ``owner/repo`` identity of the catalog.
        owner: Team or person accountable for the resources.
        deployed_by: Identity of the deployer credentials.
        deployment_id: Identifier of this run.
    """

    project: str
    repository: str
    owner: str
    deployed_by: str
    deployment_id: str
    managed_by: str = MANAGED_BY

    def for_environment(self, environment: str) -> dict[str, str]:
        return {
            "Project": self.project,
            "Repository": self.repository,
            "Environment": environment,
            "Owner": self.owner,
            "DeployedBy": self.deployed_by,
            "ManagedBy": self.managed_by,
            "DeploymentId": self.deployment_id,
        }


def merge_tags(base: Mapping[str, str], specific: Mapping[str, str]) -> dict[str, str]:
    """Merge resource tags into the base set; base keys win on conflict."""
    return {**specific, **base}


def bucket_policy_document(bucket_arn: str, distribution_arn: str) -> str:
    """Read-only access for exactly one CloudFront distribution (OAC)."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "AllowCloudFrontServicePrincipalReadOnly",
                    "Effect": "Allow",
                    "Principal": {"Service": "cloudfront.amazonaws.com"},
                    "Action": "s3:GetObject",
                    "Resource": f"{bucket_arn}/*",
                    "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
                }
            ],
        },
        sort_keys=True,
    )


@dataclass(frozen=True)
class ResourceBundle:
    """
    The instantiated bundle of one domain tuple.

    Attributes:
        domain: The owning tuple.
        graph: Nodes and edges of this tuple only.
        registry_fields: Registry key -> output reference, published once the
            bundle has converged.
    """

    domain: DomainTuple
    graph: ResourceGraph
    registry_fields: Mapping[str, Ref] = field(default_factory=dict)

    def node(self, role: str) -> ResourceNode:
        return self.graph[address(self.domain, role)]


def address(domain: DomainTuple, role: str) -> str:
    return f"{domain.key}.{role}"


def instantiate(
    domain: DomainTuple,
    base_tags: Mapping[str, str],
    router: RouterConfig | None = None,
    manage_registration: bool = False,
) -> ResourceBundle:
    """
    Build the resource graph for ``domain``. Pure; talks to no API.

    Args:
        domain: Tuple to instantiate.
        base_tags: Audit tags; they override resource-specific tags.
        router: Edge router configuration embedded in the edge function.
        manage_registration: Add a registrar delegation node.
    """
    router = router or RouterConfig()
    key = domain.key
    nodes: list[ResourceNode] = []

    def at(role: str) -> str:
        return address(domain, role)

    def add(
        role: str,
        kind: ResourceKind,
        name: str,
        properties: Mapping[str, Any],
        depends_on: Iterable[str] = (),
    ) -> None:
        tags = merge_tags(
            base_tags,
            {"Name": name, "Role": role, "Domain": domain.domain_name},
        )
        nodes.append(
            ResourceNode(
                address=at(role),
                kind=kind,
                name=name,
                domain=key,
                properties=properties,
                depends_on=tuple(at(d) for d in depends_on),
                tags=tags,
            )
        )

    add(
        ROLE_BUCKET,
        ResourceKind.BUCKET,
        f"{key}-site",
        {
            "versioning": True,
            "server_side_encryption": "AES256",
            "public_access_block": dict(S3_BLOCK_PUBLIC_ACCESS),
        },
    )
    add(
        ROLE_ZONE,
        ResourceKind.HOSTED_ZONE,
        f"{key}-zone",
        {"name": domain.domain_name, "comment": f"Managed zone for {domain.domain_name}"},
    )
    add(
        ROLE_CERTIFICATE,
        ResourceKind.CERTIFICATE,
        f"{key}-certificate",
        {
            "domain_name": domain.domain_name,
            "subject_alternative_names": [domain.www_name],
            "validation_method": "DNS",
        },
        depends_on=[ROLE_ZONE],
    )

    # One challenge record per certificate name: apex first, then www.
    validation_roles = []
    for index, label in enumerate(("apex", "www")):
        role = f"validation-record-{label}"
        validation_roles.append(role)
        record = Ref(at(ROLE_CERTIFICATE), "validation_records", index)
        add(
            role,
            ResourceKind.VALIDATION_RECORD,
            f"{key}-{role}",
            {
                "zone_id": Ref(at(ROLE_ZONE), "zone_id"),
                "name": Ref(record.address, *record.path, "name"),
                "type": Ref(record.address, *record.path, "type"),
                "records": [Ref(record.address, *record.path, "value")],
                "ttl": VALIDATION_RECORD_TTL,
                # A previous attempt may have left a stale challenge behind.
                "allow_overwrite": True,
            },
            depends_on=[ROLE_ZONE, ROLE_CERTIFICATE],
        )
    add(
        ROLE_VALIDATION,
        ResourceKind.CERTIFICATE_VALIDATION,
        f"{key}-certificate-validation",
        {
            "certificate_arn": Ref(at(ROLE_CERTIFICATE), "arn"),
            "validation_record_fqdns": [Ref(at(r), "fqdn") for r in validation_roles],
        },
        depends_on=[ROLE_CERTIFICATE, *validation_roles],
    )

    add(
        ROLE_ORIGIN_ACCESS,
        ResourceKind.ORIGIN_ACCESS_CONTROL,
        f"{key}-oac",
        {
            "origin_type": "s3",
            "signing_behavior": "always",
            "signing_protocol": "sigv4",
        },
    )
    add(
        ROLE_EDGE_FUNCTION,
        ResourceKind.EDGE_FUNCTION,
        f"{key}-router",
        {
            "runtime": "cloudfront-js-2.0",
            "comment": f"Edge router for {domain.domain_name}",
            "code": render_function_code(router),
            "publish": True,
        },
    )
    add(
        ROLE_HEADERS_POLICY,
        ResourceKind.RESPONSE_HEADERS_POLICY,
        f"{key}-security-headers",
        {"security_headers": SECURITY_HEADERS},
    )
    add(
        ROLE_DISTRIBUTION,
        ResourceKind.DISTRIBUTION,
        f"{key}-cdn",
        {
            "aliases": [domain.domain_name, domain.www_name],
            "enabled": True,
            "is_ipv6_enabled": True,
            "http_version": "http2and3",
            "default_root_object": DEFAULT_ROOT_OBJECT,
            "price_class": PRICE_CLASS,
            "origin": {
                "origin_id": ORIGIN_ID,
                "domain_name": Ref(at(ROLE_BUCKET), "bucket_regional_domain_name"),
                "origin_access_control_id": Ref(at(ROLE_ORIGIN_ACCESS), "id"),
            },
            "default_cache_behavior": {
                "target_origin_id": ORIGIN_ID,
                "viewer_protocol_policy": "redirect-to-https",
                "allowed_methods": ["GET", "HEAD", "OPTIONS"],
                "cached_methods": ["GET", "HEAD"],
                "compress": True,
                **CACHE_TTL,
                "response_headers_policy_id": Ref(at(ROLE_HEADERS_POLICY), "id"),
                "function_associations": [
                    {
                        "event_type": "viewer-request",
                        "function_arn": Ref(at(ROLE_EDGE_FUNCTION), "arn"),
                    }
                ],
            },
            "custom_error_responses": ERROR_RESPONSES,
            "restrictions": {"geo_restriction": {"restriction_type": "none"}},
            "viewer_certificate": {
                "acm_certificate_arn": Ref(at(ROLE_VALIDATION), "certificate_arn"),
                "ssl_support_method": "sni-only",
                "minimum_protocol_version": "TLSv1.2_2021",
            },
        },
        depends_on=[
            ROLE_BUCKET,
            ROLE_ORIGIN_ACCESS,
            ROLE_EDGE_FUNCTION,
            ROLE_HEADERS_POLICY,
            ROLE_VALIDATION,
        ],
    )
    add(
        ROLE_BUCKET_POLICY,
        ResourceKind.BUCKET_POLICY,
        f"{key}-bucket-policy",
        {
            "bucket": Ref(at(ROLE_BUCKET), "bucket"),
            "bucket_arn": Ref(at(ROLE_BUCKET), "arn"),
            "source_arn": Ref(at(ROLE_DISTRIBUTION), "arn"),
        },
        depends_on=[ROLE_BUCKET, ROLE_DISTRIBUTION],
    )

    alias_target = {
        "name": Ref(at(ROLE_DISTRIBUTION), "domain_name"),
        "zone_id": Ref(at(ROLE_DISTRIBUTION), "hosted_zone_id"),
        "evaluate_target_health": False,
    }
    for role, record_type in ((ROLE_ALIAS_A, "A"), (ROLE_ALIAS_AAAA, "AAAA")):
        add(
            role,
            ResourceKind.ALIAS_RECORD,
            f"{key}-{role}",
            {
                "zone_id": Ref(at(ROLE_ZONE), "zone_id"),
                "name": domain.domain_name,
                "type": record_type,
                "alias": alias_target,
            },
            depends_on=[ROLE_ZONE, ROLE_DISTRIBUTION, ROLE_BUCKET_POLICY],
        )
    add(
        ROLE_ALIAS_WWW,
        ResourceKind.ALIAS_RECORD,
        f"{key}-{ROLE_ALIAS_WWW}",
        {
            "zone_id": Ref(at(ROLE_ZONE), "zone_id"),
            "name": domain.www_name,
            "type": "CNAME",
            "ttl": WWW_RECORD_TTL,
            "records": [Ref(at(ROLE_DISTRIBUTION), "domain_name")],
        },
        depends_on=[ROLE_ZONE, ROLE_DISTRIBUTION, ROLE_BUCKET_POLICY],
    )

    if manage_registration:
        add(
            ROLE_REGISTRATION,
            ResourceKind.DOMAIN_REGISTRATION,
            domain.domain_name,
            {
                "domain_name": domain.domain_name,
                "name_servers": Ref(at(ROLE_ZONE), "name_servers"),
            },
            depends_on=[ROLE_ZONE],
        )

    graph = ResourceGraph(nodes)
    graph.validate()
    return ResourceBundle(
        domain=domain,
        graph=graph,
        registry_fields={
            KEY_BUCKET_NAME: Ref(at(ROLE_BUCKET), "bucket"),
            KEY_BUCKET_ARN: Ref(at(ROLE_BUCKET), "arn"),
            KEY_DISTRIBUTION_ID: Ref(at(ROLE_DISTRIBUTION), "id"),
            KEY_DISTRIBUTION_DOMAIN: Ref(at(ROLE_DISTRIBUTION), "domain_name"),
            KEY_CERTIFICATE_ARN: Ref(at(ROLE_CERTIFICATE), "arn"),
            KEY_HOSTED_ZONE_ID: Ref(at(ROLE_ZONE), "zone_id"),
        },
    )


def instantiate_all(
    domains: Iterable[DomainTuple],
    base_tags_for: Callable[[DomainTuple], Mapping[str, str]],
    router: RouterConfig | None = None,
    manage_registration: bool = False,
    max_workers: int = 4,
) -> list[ResourceBundle]:
    """Instantiate every tuple concurrently; result is ordered by tuple key."""
    ordered = sorted(domains, key=lambda d: d.key)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(
            pool.map(
                lambda d: instantiate(d, base_tags_for(d), router, manage_registration),
                ordered,
            )
        )


def merge_bundles(bundles: Iterable[ResourceBundle]) -> ResourceGraph:
    """One global graph over every bundle."""
    graph = ResourceGraph()
    for bundle in bundles:
        graph.merge(bundle.graph)
    graph.validate()
    return graph
