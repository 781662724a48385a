"""
Pure helpers for naming and DNS. Testable without Pulumi runtime.

Used by the certificate component (validation_option, option_value), the distribution
component (sanitize_function_name) and the DNS component (subdomain). No
Pulumi types; all functions accept and return plain Python types so they can
be unit-tested without a Pulumi stack.
"""

import re
from typing import Any, Sequence

# CloudFront Functions names: letters, digits, hyphens and underscores only.
_FUNCTION_NAME_INVALID = re.compile(r"[^A-Za-z0-9_-]")


def subdomain(
    domain: str,
    label: str,
) -> str:
    """
    Build a host name like 'www.example.com' from domain and label.

    Route 53 accepts names with or without the trailing dot; the dot is
    dropped so names compare equal to the certificate's subject names.
    Idempotent if the domain already starts with the label.
    """
    base = domain.rstrip(".")
    return base if base.startswith(f"{label}.") else f"{label}.{base}"


def sanitize_function_name(
    prefix: str,
    max_len: int = 64,
) -> str:
    """
    Produce a CloudFront-compliant function name from a prefix.

    CloudFront function names must be 1-64 characters from
    ``[A-Za-z0-9_-]``. Dots and other characters become hyphens, then the name
    is truncated to leave room for a "-router" suffix.

    Args:
        prefix: Base name (e.g. the domain tuple key).
        max_len: Maximum length (default 64 per CloudFront).

    Returns:
        Sanitized name ending with "-router" (e.g. "example-com-prd-router").
    """
    suffix = "-router"
    cleaned = _FUNCTION_NAME_INVALID.sub("-", prefix)[: max_len - len(suffix)]
    return f"{cleaned}{suffix}"


def option_value(
    option: Any,
    key: str,
) -> Any:
    """
    Read ``key`` from a provider output object or a plain mapping.

    Pulumi hands nested outputs over as typed objects with property getters;
    plain mappings show up in unit tests.
    """
    if hasattr(option, key):
        return getattr(option, key)
    return option[key]


def validation_option(
    options: Sequence[Any],
    domain_name: str,
) -> Any:
    """
    Pick the DNS challenge of ``domain_name`` from a certificate's
    ``domain_validation_options``.

    ACM returns one option per subject name in no guaranteed order, so records
    are matched by name rather than by position.

    Raises:
        KeyError: no option for ``domain_name``.
    """
    for option in options:
        if option_value(option, "domain_name") == domain_name:
            return option
    raise KeyError(domain_name)
