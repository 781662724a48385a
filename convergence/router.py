"""
Edge router: the per-request rewrite evaluated by the CDN before origin fetch.

Rules, first match wins:

1. Host is a typo domain (or a subdomain of one): 301 to the canonical domain.
2. Host starts with ``www.``: 301 to the host without the prefix.
3. Path ends with ``/``: append the default document. Path has no ``.`` at
   all: append ``/`` plus the default document. Otherwise leave it alone.

``route`` is the reference implementation; ``render_function_code`` emits the
same logic as a CloudFront Functions (cloudfront-js-2.0) handler, which is the
artifact actually attached to each distribution.
"""

import json
from dataclasses import dataclass, field
from typing import Mapping

ALIAS_PREFIX = "www."
DEFAULT_DOCUMENT = "index.html"
REDIRECT_STATUS = 301
REDIRECT_DESCRIPTION = "Moved Permanently"


@dataclass(frozen=True)
class RouterConfig:
    """
    Attributes:
        typo_domains: Mistaken spelling -> canonical domain.
        alias_prefix: Non-canonical host prefix redirected to the apex.
        default_document: Document appended to directory-style paths.
    """

    typo_domains: Mapping[str, str] = field(default_factory=dict)
    alias_prefix: str = ALIAS_PREFIX
    default_document: str = DEFAULT_DOCUMENT

    def canonical_for(self, host: str) -> str | None:
        """Canonical domain when ``host`` is a typo domain or below one."""
        for typo, canonical in self.typo_domains.items():
            if host == typo or host.endswith(f".{typo}"):
                return canonical
        return None


@dataclass(frozen=True)
class EdgeRequest:
    host: str
    path: str


@dataclass(frozen=True)
class Redirect:
    location: str
    status: int = REDIRECT_STATUS
    status_description: str = REDIRECT_DESCRIPTION


def _normalize_host(host: str) -> str:
    return host.strip().lower().split(":", 1)[0]


def rewrite_path(path: str, default_document: str = DEFAULT_DOCUMENT) -> str:
    """Directory-index rewrite. Paths containing a ``.`` are left untouched."""
    if path.endswith("/"):
        return path + default_document
    if "." not in path:
        return f"{path}/{default_document}"
    return path


def route(request: EdgeRequest, config: RouterConfig) -> Redirect | EdgeRequest:
    """
    Evaluate one request. Returns a Redirect or the (possibly rewritten) request.

    Applying ``route`` to its own pass-through output is a no-op.
    """
    host = _normalize_host(request.host)

    canonical = config.canonical_for(host)
    if canonical is not None:
        return Redirect(location=f"https://{canonical}{request.path}")

    if host.startswith(config.alias_prefix):
        return Redirect(
            location=f"https://{host[len(config.alias_prefix):]}{request.path}"
        )

    return EdgeRequest(
        host=request.host,
        path=rewrite_path(request.path, config.default_document),
    )


_FUNCTION_TEMPLATE = """\
var TYPO_DOMAINS = {typo_domains};
var ALIAS_PREFIX = {alias_prefix};
var DEFAULT_DOCUMENT = {default_document};

function redirect(location) {{
    return {{
        statusCode: {status},
        statusDescription: {description},
        headers: {{ 'location': {{ value: location }} }}
    }};
}}

function canonicalFor(host) {{
    for (var typo in TYPO_DOMAINS) {{
        if (host === typo || host.endsWith('.' + typo)) {{
            return TYPO_DOMAINS[typo];
        }}
    }}
    return null;
}}

function handler(event) {{
    var request = event.request;
    var host = request.headers.host.value.toLowerCase().split(':')[0];
    var uri = request.uri;

    var canonical = canonicalFor(host);
    if (canonical !== null) {{
        return redirect('https://' + canonical + uri);
    }}

    if (host.startsWith(ALIAS_PREFIX)) {{
        return redirect('https://' + host.substring(ALIAS_PREFIX.length) + uri);
    }}

    if (uri.endsWith('/')) {{
        request.uri = uri + DEFAULT_DOCUMENT;
    }} else if (uri.indexOf('.') === -1) {{
        request.uri = uri + '/' + DEFAULT_DOCUMENT;
    }}
    return request;
}}
"""


def render_function_code(config: RouterConfig) -> str:
    """CloudFront Functions source equivalent to ``route`` for ``config``."""
    return _FUNCTION_TEMPLATE.format(
        typo_domains=json.dumps(dict(sorted(config.typo_domains.items()))),
        alias_prefix=json.dumps(config.alias_prefix),
        default_document=json.dumps(config.default_document),
        status=REDIRECT_STATUS,
        description=json.dumps(REDIRECT_DESCRIPTION),
    )
