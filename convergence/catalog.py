"""
Domain catalog: discover the (domain, environment) tuples to manage.

A declaration is one small TOML file at ``{root}/{safe_name}/{environment}/domain.toml``
whose only key is ``domain_name``. Everything else about a tuple is derived.
Sources are pluggable (``FilesystemSource`` for the repository layout,
``StaticSource`` for embedded lists) and ``scan`` applies the same validation
to all of them: a malformed path, an invalid name, a duplicate tuple or two
domains sharing a safe name fail the whole scan with ``CatalogError``.
"""

import logging
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from convergence.errors import CatalogError

logger = logging.getLogger(__name__)

DECLARATION_FILENAME = "domain.toml"
DEFAULT_ENVIRONMENT = "prd"

_DOMAIN_RE = re.compile(
    r"^(?=.{4,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)
_ENVIRONMENT_RE = re.compile(r"^[a-z][a-z0-9-]{0,15}$")


def safe_name(domain_name: str) -> str:
    """Identifier-safe form of a domain name: ``my.site.org`` -> ``my-site-org``."""
    return domain_name.strip().lower().rstrip(".").replace(".", "-")


@dataclass(frozen=True)
class DomainTuple:
    """
    One managed (domain, environment) pair.

    Attributes:
        domain_name: Apex domain, lower-cased (e.g. "example.com").
        environment: Environment label taken from the declaration path.
        safe_name: ``domain_name`` with dots replaced by hyphens.
    """

    domain_name: str
    environment: str
    safe_name: str

    @classmethod
    def create(cls, domain_name: str, environment: str) -> "DomainTuple":
        """Normalize and validate; raises ValueError on bad input."""
        domain = domain_name.strip().lower().rstrip(".")
        env = environment.strip().lower()
        if not _DOMAIN_RE.match(domain):
            raise ValueError(f"invalid domain name {domain_name!r}")
        if not _ENVIRONMENT_RE.match(env):
            raise ValueError(f"invalid environment {environment!r}")
        return cls(domain_name=domain, environment=env, safe_name=safe_name(domain))

    @property
    def key(self) -> str:
        """Stable identifier of the tuple, used as a resource-name prefix."""
        return f"{self.safe_name}-{self.environment}"

    @property
    def www_name(self) -> str:
        return f"www.{self.domain_name}"


@dataclass(frozen=True)
class Declaration:
    """A raw declaration as read from a source, before validation."""

    domain_name: str
    environment: str
    origin: str
    # First-level directory name when the declaration is path-derived.
    directory: str | None = None


class CatalogSource(Protocol):
    def declarations(self) -> Iterable[Declaration]: ...


class FilesystemSource:
    """Declarations laid out as ``{root}/{safe_name}/{environment}/{filename}``."""

    def __init__(self, root: Path | str, filename: str = DECLARATION_FILENAME):
        self.root = Path(root)
        self.filename = filename

    def declarations(self) -> Iterable[Declaration]:
        if not self.root.is_dir():
            raise CatalogError(f"declarations root {self.root} is not a directory")
        for path in sorted(self.root.rglob(self.filename)):
            relative = path.relative_to(self.root)
            if len(relative.parts) != 3:
                raise CatalogError(
                    f"{relative}: expected {{domain}}/{{environment}}/{self.filename}"
                )
            try:
                data = tomllib.loads(path.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError) as exc:
                raise CatalogError(f"{relative}: unreadable declaration") from exc
            domain_name = data.get("domain_name")
            if not isinstance(domain_name, str):
                raise CatalogError(f"{relative}: missing string key 'domain_name'")
            yield Declaration(
                domain_name=domain_name,
                environment=relative.parts[1],
                origin=str(relative),
                directory=relative.parts[0],
            )


class StaticSource:
    """Declarations supplied in code, e.g. ``[("example.com", "prd")]``."""

    def __init__(self, entries: Iterable[tuple[str, str]]):
        self.entries = list(entries)

    def declarations(self) -> Iterable[Declaration]:
        for index, (domain_name, environment) in enumerate(self.entries):
            yield Declaration(
                domain_name=domain_name,
                environment=environment,
                origin=f"<static #{index}>",
            )


def scan(source: CatalogSource | Path | str) -> frozenset[DomainTuple]:
    """
    Validate every declaration of ``source`` and return the tuple set.

    A path is wrapped in a FilesystemSource. Identical inputs always yield an
    identical set; order carries no meaning.

    Raises:
        CatalogError: malformed declaration, directory not matching the safe
            name, duplicate (domain, environment), or two distinct domains
            normalizing to the same safe name.
    """
    if isinstance(source, (str, Path)):
        source = FilesystemSource(source)

    tuples: dict[tuple[str, str], DomainTuple] = {}
    owners: dict[str, str] = {}
    for declaration in source.declarations():
        try:
            item = DomainTuple.create(declaration.domain_name, declaration.environment)
        except ValueError as exc:
            raise CatalogError(f"{declaration.origin}: {exc}") from exc

        if declaration.directory is not None and declaration.directory != item.safe_name:
            raise CatalogError(
                f"{declaration.origin}: directory {declaration.directory!r} "
                f"does not match safe name {item.safe_name!r}"
            )
        identity = (item.domain_name, item.environment)
        if identity in tuples:
            raise CatalogError(
                f"{declaration.origin}: duplicate declaration for "
                f"{item.domain_name} ({item.environment})"
            )
        owner = owners.setdefault(item.safe_name, item.domain_name)
        if owner != item.domain_name:
            raise CatalogError(
                f"{declaration.origin}: safe name {item.safe_name!r} collides "
                f"between {owner} and {item.domain_name}"
            )
        tuples[identity] = item

    logger.debug("Catalog scan found %d domain tuple(s)", len(tuples))
    return frozenset(tuples.values())


def create_declaration(
    root: Path | str,
    domain_name: str,
    environment: str = DEFAULT_ENVIRONMENT,
    filename: str = DECLARATION_FILENAME,
) -> Path:
    """
    Scaffold the declaration for a new domain tuple and return its path.

    Raises:
        CatalogError: invalid name, or the tuple is already declared.
    """
    try:
        item = DomainTuple.create(domain_name, environment)
    except ValueError as exc:
        raise CatalogError(str(exc)) from exc

    target = Path(root) / item.safe_name / item.environment / filename
    if target.exists():
        raise CatalogError(f"{item.domain_name} ({item.environment}) already exists at {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(f'domain_name = "{item.domain_name}"\n', encoding="utf-8")
    logger.info("Declared %s (%s) at %s", item.domain_name, item.environment, target)
    return target
