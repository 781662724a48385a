"""Tests for the convergence engine"""

import pytest

from conftest import STATE_KEY, make_bundles
from convergence.backends.memory import InMemoryCloud
from convergence.bundle import BaseTags
from convergence.credentials import Credentials, StaticCredentialProvider
from convergence.engine import (
    ConvergenceEngine,
    DomainStatus,
    RunPhase,
    deployed_domains,
)
from convergence.errors import (
    BackendUnavailableError,
    LockContentionError,
    ProviderError,
)
from convergence.plan import Action
from convergence.provider import CERTIFICATE_ISSUED
from convergence.registry import REGISTRY_KEYS


def roles(operations, domain):
    return [op.address.split(".", 1)[1] for op in operations if op.domain == domain]


class TestApply:
    def test_converges_and_walks_every_phase(self, engine, store, cloud):
        report = engine.apply(make_bundles(("example.com", "prd")))

        assert report.succeeded
        assert report.phases == [
            RunPhase.IDLE,
            RunPhase.LOCKING,
            RunPhase.DIFFING,
            RunPhase.PLANNING,
            RunPhase.APPLYING,
            RunPhase.PUBLISHING,
            RunPhase.IDLE,
        ]
        assert report.domains["example-com-prd"].status is DomainStatus.CONVERGED
        assert len(report.executed) == 14
        assert all(op.action is Action.CREATE for op in report.executed)
        assert len(cloud.resources) == 14
        assert store.locks(STATE_KEY) == []

    def test_state_written_after_every_operation(self, engine, store):
        report = engine.apply(make_bundles(("example.com", "prd")))
        state = engine.read_state()

        assert store.writes == len(report.executed)
        assert state.serial == len(report.executed)
        assert set(state.resources) == {op.address for op in report.executed}
        assert state.domains == {
            "example-com-prd": {"domain_name": "example.com", "environment": "prd"}
        }

    def test_dependency_order(self, engine):
        report = engine.apply(make_bundles(("example.com", "prd")))
        order = roles(report.executed, "example-com-prd")

        assert order.index("certificate") < order.index("certificate-validation")
        assert order.index("certificate-validation") < order.index("distribution")
        assert order.index("distribution") < order.index("bucket-policy")
        assert order.index("bucket-policy") < order.index("alias-apex-a")
        assert order.index("bucket-policy") < order.index("alias-www")

    def test_second_apply_is_empty(self, engine, cloud):
        engine.apply(make_bundles(("example.com", "prd"), ("example.org", "prd")))
        calls = list(cloud.calls)

        # A new run id changes only the volatile DeploymentId tag.
        tags = BaseTags("sites", "acme/sites", "platform", "deployer", "run-2")
        report = engine.apply(make_bundles(("example.com", "prd"), ("example.org", "prd"), tags=tags))

        assert report.succeeded
        assert report.plan.is_empty
        assert report.executed == []
        assert cloud.calls == calls
        assert all(r.status is DomainStatus.UNCHANGED for r in report.domains.values())

    def test_stable_tag_change_updates_in_place(self, engine):
        engine.apply(make_bundles(("example.com", "prd")))
        tags = BaseTags("sites", "acme/sites", "web-team", "deployer", "run-1")
        report = engine.apply(make_bundles(("example.com", "prd"), tags=tags))

        assert report.succeeded
        assert {op.action for op in report.executed} == {Action.UPDATE}

    def test_removed_declaration_is_not_destroyed(self, engine, cloud):
        engine.apply(make_bundles(("example.com", "prd"), ("example.org", "prd")))
        report = engine.apply(make_bundles(("example.org", "prd")))

        assert report.plan.is_empty
        assert len(engine.read_state().for_domain("example-com-prd")) == 14
        assert not any(action == "delete" for action, _ in cloud.calls)

    def test_plan_takes_no_lock_and_writes_nothing(self, engine, store):
        plan = engine.plan(make_bundles(("example.com", "prd")))
        assert plan.counts()[Action.CREATE] == 14
        assert store.writes == 0
        assert store.locks(STATE_KEY) == []


class TestDomainIsolation:
    def test_stalled_certificate_fails_only_that_domain(self, engine, cloud, registry, clock):
        cloud.stalled_domains.add("a-site.com")
        report = engine.apply(make_bundles(("a-site.com", "prd"), ("b-site.com", "prd")))

        failed = report.domains["a-site-com-prd"]
        assert failed.status is DomainStatus.FAILED
        assert failed.error_type == "ValidationTimeoutError"
        assert report.domains["b-site-com-prd"].status is DomainStatus.CONVERGED
        assert report.phase is RunPhase.FAILED
        assert not report.succeeded
        assert clock.now >= 1_700_000_000.0 + 60

        # The domain's partial work is recorded, not hidden.
        recorded = {r.name for r in engine.read_state().for_domain("a-site-com-prd")}
        assert "a-site-com-prd-certificate" in recorded
        assert "a-site-com-prd-certificate-validation" not in recorded
        assert "a-site-com-prd-cdn" not in recorded

        assert registry.read("a-site.com") == {}
        assert set(registry.read("b-site.com")) == set(REGISTRY_KEYS)

    def test_rerun_resumes_failed_domain(self, engine, cloud, registry):
        cloud.stalled_domains.add("a-site.com")
        bundles = make_bundles(("a-site.com", "prd"), ("b-site.com", "prd"))
        engine.apply(bundles)

        for arn in list(cloud.certificate_statuses):
            cloud.certificate_statuses[arn] = CERTIFICATE_ISSUED
        report = engine.apply(bundles)

        assert report.succeeded
        assert report.plan.domains == {"a-site-com-prd"}
        assert all(op.action is Action.CREATE for op in report.executed)
        assert "certificate" not in roles(report.executed, "a-site-com-prd")
        assert set(registry.read("a-site.com")) == set(REGISTRY_KEYS)

    def test_resource_conflict(self, engine, cloud):
        cloud.external.add(("bucket", "a-site-com-prd-site"))
        report = engine.apply(make_bundles(("a-site.com", "prd"), ("b-site.com", "prd")))

        assert report.domains["a-site-com-prd"].error_type == "ResourceConflictError"
        assert report.domains["b-site-com-prd"].status is DomainStatus.CONVERGED

    def test_registration_rejected(self, engine, cloud, registry):
        cloud.rejected_registrations.add("a-site.com")
        bundles = make_bundles(
            ("a-site.com", "prd"), ("b-site.com", "prd"), manage_registration=True
        )
        report = engine.apply(bundles)

        assert report.domains["a-site-com-prd"].error_type == "RegistrationRejectedError"
        assert report.domains["b-site-com-prd"].status is DomainStatus.CONVERGED
        assert registry.read("a-site.com") == {}

    def test_failed_certificate(self, engine, cloud):
        cloud.failed_domains.add("a-site.com")
        report = engine.apply(make_bundles(("a-site.com", "prd")))
        assert report.domains["a-site-com-prd"].error_type == "ProviderError"


class TestRegistry:
    def test_published_values_match_state(self, engine, registry):
        engine.apply(make_bundles(("example.com", "prd")))
        summary = deployed_domains(engine.read_state())["example-com-prd"]
        published = registry.read("example.com")

        assert published["bucket-name"] == summary["bucket_name"] == "example-com-prd-site"
        assert published["cloudfront-distribution-id"] == summary["cloudfront_distribution_id"]
        assert published["certificate-arn"] == summary["certificate_arn"]
        assert published["hosted-zone-id"] == summary["hosted_zone_id"]

    def test_other_environments_do_not_publish(self, engine, registry):
        report = engine.apply(make_bundles(("example.com", "stg")))
        assert report.succeeded
        assert registry.read("example.com") == {}

    def test_second_apply_rewrites_nothing(self, engine):
        engine.apply(make_bundles(("example.com", "prd")))
        report = engine.apply(make_bundles(("example.com", "prd")))
        assert report.domains["example-com-prd"].registry_changes == []


class TestDestroy:
    def test_reverse_dependency_order(self, engine):
        engine.apply(make_bundles(("example.com", "prd")))
        report = engine.destroy()
        order = roles(report.executed, "example-com-prd")

        assert report.succeeded
        assert all(op.action is Action.DELETE for op in report.executed)
        for alias in ("alias-apex-a", "alias-apex-aaaa", "alias-www"):
            assert order.index(alias) < order.index("bucket-policy")
        assert order.index("bucket-policy") < order.index("distribution")
        assert order.index("distribution") < order.index("certificate-validation")
        assert order.index("certificate-validation") < order.index("certificate")
        assert engine.read_state().resources == {}

    def test_registry_removed_after_destroy(self, engine, registry):
        engine.apply(make_bundles(("example.com", "prd")))
        assert registry.read("example.com")

        report = engine.destroy(["example.com"])
        assert report.domains["example-com-prd"].status is DomainStatus.DESTROYED
        assert report.domains["example-com-prd"].registry_changes == list(REGISTRY_KEYS)
        assert registry.read("example.com") == {}

    def test_targets_limit_scope(self, engine):
        engine.apply(make_bundles(("example.com", "prd"), ("example.org", "prd")))
        report = engine.destroy(["example-org-prd"])

        assert report.plan.domains == {"example-org-prd"}
        assert set(engine.read_state().domains) == {"example-com-prd"}

    def test_failed_delete_keeps_registry(self, store, registry, clock):
        class StuckCloud(InMemoryCloud):
            def delete(self, record):
                if record.kind == "distribution":
                    raise ProviderError(record.domain, "distribution still deploying")
                super().delete(record)

        cloud = StuckCloud()
        engine = ConvergenceEngine(
            store,
            cloud,
            registry,
            StaticCredentialProvider(Credentials("deployer")),
            state_key=STATE_KEY,
            clock=clock,
            sleep=clock.sleep,
        )
        engine.apply(make_bundles(("example.com", "prd")))
        report = engine.destroy()

        assert report.domains["example-com-prd"].status is DomainStatus.FAILED
        assert set(registry.read("example.com")) == set(REGISTRY_KEYS)
        assert "example-com-prd.distribution" in engine.read_state().resources


class TestRunScopedFailures:
    def test_backend_unavailable(self, engine, store, cloud):
        store.available = False
        with pytest.raises(BackendUnavailableError):
            engine.apply(make_bundles(("example.com", "prd")))
        assert cloud.calls == []

    def test_lock_released_when_publishing_fails(self, engine, store, parameters):
        parameters.available = False
        with pytest.raises(BackendUnavailableError):
            engine.apply(make_bundles(("example.com", "prd")))
        assert store.locks(STATE_KEY) == []
        assert len(engine.read_state().resources) == 14

    def test_release_failure_keeps_run_error(self, engine, store, parameters, monkeypatch):
        def unreachable(lock):
            raise BackendUnavailableError("state store is unavailable")

        monkeypatch.setattr(store, "release", unreachable)
        parameters.available = False
        with pytest.raises(BackendUnavailableError, match="parameter store"):
            engine.apply(make_bundles(("example.com", "prd")))

    def test_release_failure_after_success_is_raised(self, engine, store, monkeypatch):
        def unreachable(lock):
            raise BackendUnavailableError("state store is unavailable")

        monkeypatch.setattr(store, "release", unreachable)
        with pytest.raises(BackendUnavailableError, match="state store"):
            engine.apply(make_bundles(("example.com", "prd")))

    def test_lock_contention(self, engine, store, cloud, clock):
        store.acquire(STATE_KEY, "someone-else", "apply", 3600, clock())
        with pytest.raises(LockContentionError, match="someone-else"):
            engine.apply(make_bundles(("example.com", "prd")))
        assert clock.sleeps == [0.5, 1.0]
        assert cloud.calls == []

    def test_stale_lock_recovered(self, engine, store, clock):
        store.acquire(STATE_KEY, "crashed-run", "apply", 10, clock() - 60)
        report = engine.apply(make_bundles(("example.com", "prd")))
        assert report.succeeded


class TestDeployedDomains:
    def test_summary(self, engine):
        engine.apply(make_bundles(("example.com", "prd")))
        summary = deployed_domains(engine.read_state())

        assert list(summary) == ["example-com-prd"]
        entry = summary["example-com-prd"]
        assert entry["domain_name"] == "example.com"
        assert entry["environment"] == "prd"
        assert entry["bucket_arn"] == "arn:aws:s3:::example-com-prd-site"
        assert entry["cloudfront_domain_name"].endswith(".cloudfront.net")

    def test_empty(self, engine):
        assert deployed_domains(engine.read_state()) == {}
