"""Tests for the static-site CLI (local backend in a temporary directory)"""

import json

import pytest
from typer.testing import CliRunner

from conftest import write_declaration
from convergence.cli.app import app

runner = CliRunner()

ENV = {
    "STATIC_SITE_REPOSITORY": "acme/sites",
    "STATIC_SITE_DEPLOYER": "ci",
}


@pytest.fixture
def invoke(tmp_path):
    root = tmp_path / "projects"
    state = tmp_path / "state"

    def run(*args, input=None, env=None):
        return runner.invoke(
            app,
            ["--domains-root", str(root), "--state-dir", str(state), *args],
            input=input,
            env={**ENV, **(env or {})},
        )

    run.root = root
    run.state = state
    return run


def parameters(invoke):
    path = invoke.state / "parameters.json"
    return json.loads(path.read_text(encoding="utf-8")) if path.exists() else {}


class TestCreateDomain:
    def test_creates_declaration(self, invoke):
        result = invoke("create-domain", "example.com")
        assert result.exit_code == 0, result.output
        path = invoke.root / "example-com" / "prd" / "domain.toml"
        assert path.read_text(encoding="utf-8") == 'domain_name = "example.com"\n'

    def test_environment_option(self, invoke):
        result = invoke("create-domain", "example.com", "--environment", "stg")
        assert result.exit_code == 0, result.output
        assert (invoke.root / "example-com" / "stg" / "domain.toml").exists()

    def test_invalid_name(self, invoke):
        result = invoke("create-domain", "not a domain")
        assert result.exit_code == 1
        assert "CatalogError" in result.output

    def test_existing(self, invoke):
        invoke("create-domain", "example.com")
        assert invoke("create-domain", "example.com").exit_code == 1


class TestDeploy:
    def test_converges_and_publishes(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        result = invoke("deploy")

        assert result.exit_code == 0, result.output
        assert "All domains converged" in result.output
        assert "/static-website/infrastructure/example.com/bucket-name" in parameters(invoke)

    def test_plan_after_deploy_is_empty(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        invoke("deploy")
        result = invoke("plan")
        assert result.exit_code == 0, result.output
        assert "No changes" in result.output

    def test_plan_before_deploy(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        result = invoke("plan")
        assert result.exit_code == 0, result.output
        assert "Plan: 14 to create, 0 to update, 0 to delete" in result.output

    def test_domain_filter_without_match(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        result = invoke("deploy", "--domain", "other.org")
        assert result.exit_code == 0
        assert "No domains matched" in result.output
        assert not (invoke.state / "resources.json").exists()

    def test_missing_catalog(self, invoke):
        result = invoke("deploy")
        assert result.exit_code == 1
        assert "CatalogError" in result.output

    def test_invalid_setting(self, invoke):
        result = invoke("deploy", env={"STATIC_SITE_LOCK_ATTEMPTS": "zero"})
        assert result.exit_code == 1
        assert "STATIC_SITE_LOCK_ATTEMPTS" in result.output


class TestDestroy:
    @pytest.fixture
    def deployed(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        assert invoke("deploy").exit_code == 0
        return invoke

    def test_wrong_token_cancels(self, deployed):
        result = deployed("destroy", "--confirm", "yes")
        assert result.exit_code == 0
        assert "Destruction cancelled." in result.output
        assert parameters(deployed)

    def test_prompted_token_destroys(self, deployed):
        result = deployed("destroy", "--skip-checks", input="DESTROY\n")
        assert result.exit_code == 0, result.output
        assert "Destroy complete" in result.output
        assert parameters(deployed) == {}

        listing = deployed("list-resources")
        assert "No resources recorded" in listing.output

    def test_failed_checks_destroy_nothing(self, deployed, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        result = deployed("destroy", "--confirm", "DESTROY")
        assert result.exit_code == 1
        assert "nothing was destroyed" in result.output
        assert parameters(deployed)
        assert json.loads((deployed.state / "resources.json").read_text(encoding="utf-8"))[
            "resources"
        ]

    def test_nothing_to_destroy(self, invoke):
        result = invoke("destroy", "--confirm", "DESTROY")
        assert result.exit_code == 0
        assert "Nothing to destroy" in result.output


class TestInspection:
    def test_list_resources(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        invoke("deploy")
        result = invoke("list-resources")
        assert result.exit_code == 0, result.output
        assert "serial" in result.output

    def test_verify_prerequisites_fails_outside_git(self, invoke, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        result = invoke("verify-prerequisites")
        assert result.exit_code == 1
        assert "check(s) failed" in result.output

    def test_force_unlock_unknown_lock(self, invoke):
        result = invoke("force-unlock", "does-not-exist")
        assert result.exit_code == 1
        assert "No lock" in result.output

    def test_force_unlock_unreadable_lock(self, invoke):
        invoke.state.mkdir(parents=True)
        lock = invoke.state / "static-website-infrastructure__acme-sites__state.lock"
        lock.write_text("", encoding="utf-8")

        result = invoke("force-unlock", "unreadable")
        assert result.exit_code == 0, result.output
        assert "Removed lock unreadable" in result.output
        assert not lock.exists()


class TestUnpublish:
    def test_removes_entries_left_by_pulumi_destroy(self, invoke):
        invoke.state.mkdir(parents=True)
        prefix = "/static-website/infrastructure"
        (invoke.state / "parameters.json").write_text(
            json.dumps(
                {
                    f"{prefix}/example.com/bucket-name": "example-com-prd-site",
                    f"{prefix}/example.com/hosted-zone-id": "Z000000000002",
                    f"{prefix}/example.org/bucket-name": "example-org-prd-site",
                }
            ),
            encoding="utf-8",
        )

        result = invoke("unpublish", "example.com")
        assert result.exit_code == 0, result.output
        assert "Removed 2 registry entries" in result.output
        assert parameters(invoke) == {f"{prefix}/example.org/bucket-name": "example-org-prd-site"}

    def test_refused_while_resources_recorded(self, invoke):
        write_declaration(invoke.root, "example-com", "prd", "example.com")
        invoke("deploy")

        result = invoke("unpublish", "example.com")
        assert result.exit_code == 1
        assert "still has recorded resources" in result.output
        assert "/static-website/infrastructure/example.com/bucket-name" in parameters(invoke)

    def test_nothing_published(self, invoke):
        result = invoke("unpublish", "example.com")
        assert result.exit_code == 0
        assert "No registry entries" in result.output
