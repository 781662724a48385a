"""Tests for the domain catalog"""

import pytest

from conftest import write_declaration
from convergence.catalog import (
    DomainTuple,
    StaticSource,
    create_declaration,
    safe_name,
    scan,
)
from convergence.errors import CatalogError


class TestSafeName:
    def test_replaces_dots(self):
        assert safe_name("my.site.org") == "my-site-org"

    def test_normalizes_case_and_trailing_dot(self):
        assert safe_name("Example.COM.") == "example-com"


class TestDomainTuple:
    def test_create_normalizes(self):
        item = DomainTuple.create(" Example.com ", "PRD")
        assert item == DomainTuple("example.com", "prd", "example-com")
        assert item.key == "example-com-prd"
        assert item.www_name == "www.example.com"

    def test_rejects_invalid_domain(self):
        with pytest.raises(ValueError):
            DomainTuple.create("not_a_domain", "prd")

    def test_rejects_invalid_environment(self):
        with pytest.raises(ValueError):
            DomainTuple.create("example.com", "Prod Env")


class TestScanFilesystem:
    def test_discovers_every_tuple(self, domains_root):
        write_declaration(domains_root, "example-com", "prd", "example.com")
        write_declaration(domains_root, "example-com", "stg", "example.com")
        write_declaration(domains_root, "other-org", "prd", "other.org")

        assert {(d.domain_name, d.environment) for d in scan(domains_root)} == {
            ("example.com", "prd"),
            ("example.com", "stg"),
            ("other.org", "prd"),
        }

    def test_deterministic(self, domains_root):
        write_declaration(domains_root, "example-com", "prd", "example.com")
        write_declaration(domains_root, "other-org", "prd", "other.org")
        assert scan(domains_root) == scan(domains_root)

    def test_empty_root(self, domains_root):
        assert scan(domains_root) == frozenset()

    def test_missing_root(self, tmp_path):
        with pytest.raises(CatalogError, match="not a directory"):
            scan(tmp_path / "absent")

    def test_declaration_too_shallow(self, domains_root):
        path = domains_root / "example-com" / "domain.toml"
        path.parent.mkdir()
        path.write_text('domain_name = "example.com"\n', encoding="utf-8")
        with pytest.raises(CatalogError, match="expected"):
            scan(domains_root)

    def test_declaration_too_deep(self, domains_root):
        write_declaration(domains_root / "nested", "example-com", "prd", "example.com")
        with pytest.raises(CatalogError, match="expected"):
            scan(domains_root)

    def test_directory_must_match_safe_name(self, domains_root):
        write_declaration(domains_root, "example", "prd", "example.com")
        with pytest.raises(CatalogError, match="does not match safe name"):
            scan(domains_root)

    def test_missing_domain_name(self, domains_root):
        path = domains_root / "example-com" / "prd" / "domain.toml"
        path.parent.mkdir(parents=True)
        path.write_text('name = "example.com"\n', encoding="utf-8")
        with pytest.raises(CatalogError, match="domain_name"):
            scan(domains_root)

    def test_unparseable_declaration(self, domains_root):
        path = domains_root / "example-com" / "prd" / "domain.toml"
        path.parent.mkdir(parents=True)
        path.write_text("domain_name = \n", encoding="utf-8")
        with pytest.raises(CatalogError, match="unreadable"):
            scan(domains_root)

    def test_safe_name_collision(self, domains_root):
        # a-b.c.com and a.b-c.com both normalize to a-b-c-com.
        write_declaration(domains_root, "a-b-c-com", "prd", "a-b.c.com")
        write_declaration(domains_root, "a-b-c-com", "stg", "a.b-c.com")
        with pytest.raises(CatalogError, match="collides"):
            scan(domains_root)


class TestScanStatic:
    def test_collision_rejected(self):
        with pytest.raises(CatalogError, match="collides"):
            scan(StaticSource([("a-b.c.com", "prd"), ("a.b-c.com", "prd")]))

    def test_duplicate_rejected(self):
        with pytest.raises(CatalogError, match="duplicate"):
            scan(StaticSource([("example.com", "prd"), ("EXAMPLE.com", "prd")]))

    def test_invalid_entry_names_origin(self):
        with pytest.raises(CatalogError, match="static #1"):
            scan(StaticSource([("example.com", "prd"), ("bad domain", "prd")]))


class TestCreateDeclaration:
    def test_writes_declaration(self, domains_root):
        path = create_declaration(domains_root, "My.Site.org")
        assert path == domains_root / "my-site-org" / "prd" / "domain.toml"
        assert path.read_text(encoding="utf-8") == 'domain_name = "my.site.org"\n'
        assert scan(domains_root) == {DomainTuple.create("my.site.org", "prd")}

    def test_custom_environment(self, domains_root):
        path = create_declaration(domains_root, "example.com", environment="stg")
        assert path.parent.name == "stg"

    def test_refuses_existing(self, domains_root):
        create_declaration(domains_root, "example.com")
        with pytest.raises(CatalogError, match="already exists"):
            create_declaration(domains_root, "example.com")

    def test_refuses_invalid_name(self, domains_root):
        with pytest.raises(CatalogError):
            create_declaration(domains_root, "-bad-.com")
        assert not any(domains_root.iterdir())
