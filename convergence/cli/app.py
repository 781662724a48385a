"""CLI application for static website fleet convergence."""

import os
from pathlib import Path

import typer

from config import EngineSettings
from convergence.catalog import create_declaration
from convergence.cli.context import AppContext, build_context
from convergence.cli.exits import die, exit_on_error, ok_exit, warn_exit
from convergence.cli.options import (
    BackendOpt,
    ConfirmTokenOpt,
    DestroyPlanOpt,
    DomainOpt,
    DomainsRootOpt,
    EnvironmentOpt,
    SkipChecksOpt,
    StateDirOpt,
    VerboseOpt,
)
from convergence.cli.output import configure_logging, out
from convergence.engine import RunReport, deployed_domains
from convergence.errors import ConfigError
from convergence.plan import Action, Mode
from convergence.prerequisites import Check, verify

DESTROY_TOKEN = "DESTROY"

app = typer.Typer(
    help="static-site - converge a fleet of static websites",
    no_args_is_help=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    domains_root: Path | None = DomainsRootOpt,
    state_dir: Path | None = StateDirOpt,
    backend: str | None = BackendOpt,
    verbose: bool = VerboseOpt,
):
    """Resolve settings once per invocation (STATIC_SITE_* variables, then options)."""
    configure_logging(verbose)
    try:
        settings = EngineSettings.from_env(os.environ).replace(
            domains_root=domains_root, state_dir=state_dir, backend=backend
        )
    except ConfigError as exc:
        die(str(exc), code=1)
    ctx.obj = build_context(settings, os.environ)


def _summary(appctx: AppContext) -> None:
    summary = deployed_domains(appctx.engine.read_state())
    if not summary:
        out.warn("No domains deployed")
        return
    counts = {
        str(d["domain_name"]): len(appctx.registry.read(str(d["domain_name"])))
        for d in summary.values()
    }
    out.deployed_table(summary, counts)


def _verify(appctx: AppContext) -> list[Check]:
    """Run and print every prerequisite check; return the failed ones."""
    checks = verify(
        appctx.settings.domains_root,
        appctx.credentials,
        lambda: appctx.backend.store,
        appctx.repository.state_key,
    )
    out.checks(checks)
    return [c for c in checks if not c.ok]


def _report(report: RunReport) -> None:
    if report.plan is not None:
        counts = report.plan.counts()
        out.kv(
            {
                "planned": len(report.plan.operations),
                "executed": len(report.executed),
                **{action.value: counts[action] for action in Action},
            }
        )
    if report.domains:
        out.report_table(report.domains.values())


@app.command()
def deploy(ctx: typer.Context, domain: list[str] = DomainOpt):
    """
    Converge every declared domain (or the --domain subset).
    """
    appctx: AppContext = ctx.obj

    with exit_on_error():
        with out.status("Scanning catalog..."):
            bundles = appctx.bundles(domain)
        if not bundles:
            warn_exit("No domains matched", code=0)

        out.header(f"Deploying {len(bundles)} domain tuple(s) to {appctx.repository.state_key}")
        report = appctx.engine.apply(bundles)
        _report(report)
        _summary(appctx)

    if report.failed_domains:
        die(f"{len(report.failed_domains)} domain(s) failed to converge")
    out.success("All domains converged")


@app.command()
def plan(
    ctx: typer.Context,
    destroy: bool = DestroyPlanOpt,
    domain: list[str] = DomainOpt,
):
    """
    Preview the operations of a deploy (or --destroy) without changing anything.
    """
    appctx: AppContext = ctx.obj

    with exit_on_error():
        if destroy:
            result = appctx.engine.plan([], Mode.DESTROY, domain or None)
        else:
            result = appctx.engine.plan(appctx.bundles(domain), Mode.APPLY)

    if result.is_empty:
        ok_exit("No changes. Infrastructure matches the catalog.")
    out.plan_table(result.operations, title=f"{result.mode.value} plan")
    counts = result.counts()
    out.info(
        f"Plan: {counts[Action.CREATE]} to create, {counts[Action.UPDATE]} to update, "
        f"{counts[Action.DELETE]} to delete"
    )


@app.command()
def destroy(
    ctx: typer.Context,
    domain: list[str] = DomainOpt,
    confirm: str | None = ConfirmTokenOpt,
    skip_checks: bool = SkipChecksOpt,
):
    """
    Delete every recorded resource of the targeted domains (all when no --domain).

    Prerequisites are verified after confirmation; a failed check destroys nothing.
    """
    appctx: AppContext = ctx.obj

    with exit_on_error():
        preview = appctx.engine.plan([], Mode.DESTROY, domain or None)
    if preview.is_empty:
        ok_exit("Nothing to destroy")

    out.plan_table(preview.operations, title="Resources to delete")
    if confirm is None:
        confirm = typer.prompt(f"Type {DESTROY_TOKEN} to continue")
    if confirm != DESTROY_TOKEN:
        ok_exit("Destruction cancelled.")

    if not skip_checks:
        failed = _verify(appctx)
        if failed:
            die(f"{len(failed)} check(s) failed; nothing was destroyed")

    with exit_on_error():
        report = appctx.engine.destroy(domain or None)
        _report(report)

    if report.failed_domains:
        die(f"{len(report.failed_domains)} domain(s) failed to destroy")
    out.success("Destroy complete")


@app.command("list-resources")
def list_resources(ctx: typer.Context):
    """
    Show the deployed domains, their registry entries and every recorded resource.
    """
    appctx: AppContext = ctx.obj

    with exit_on_error():
        state = appctx.engine.read_state()
        if not state.resources:
            warn_exit(f"No resources recorded under {appctx.repository.state_key}")
        out.kv({"state": appctx.repository.state_key, "serial": state.serial})
        _summary(appctx)
        out.resources_table(
            sorted(state.resources.values(), key=lambda r: r.address)
        )


@app.command("create-domain")
def create_domain(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Apex domain name, e.g. example.com"),
    environment: str = EnvironmentOpt,
):
    """
    Declare a new domain tuple in the catalog.
    """
    appctx: AppContext = ctx.obj

    with exit_on_error():
        path = create_declaration(appctx.settings.domains_root, name, environment)
    out.success(f"Created {path}")
    out.info("Commit the declaration, then run 'static-site deploy'")


@app.command()
def unpublish(
    ctx: typer.Context,
    domain_name: str = typer.Argument(..., help="Domain whose registry entries to remove"),
):
    """
    Remove the registry entries of a domain whose resources are gone.

    Needed after `pulumi destroy`, which retains the registry parameters.
    """
    appctx: AppContext = ctx.obj
    domain_name = domain_name.strip().lower()

    with exit_on_error():
        deployed = [
            key
            for key, summary in deployed_domains(appctx.engine.read_state()).items()
            if summary["domain_name"] == domain_name
        ]
        if deployed:
            die(
                f"{domain_name} still has recorded resources "
                f"({', '.join(deployed)}); destroy it first"
            )
        removed = appctx.registry.unpublish(domain_name)

    if not removed:
        ok_exit(f"No registry entries for {domain_name}")
    out.success(f"Removed {len(removed)} registry entries for {domain_name}")


@app.command("verify-prerequisites")
def verify_prerequisites(ctx: typer.Context):
    """
    Check git, credentials, backend and catalog before a deploy.
    """
    failed = _verify(ctx.obj)
    if failed:
        die(f"{len(failed)} check(s) failed")
    out.success("All prerequisites met")


@app.command("force-unlock")
def force_unlock(
    ctx: typer.Context,
    lock_id: str = typer.Argument(..., help="Identifier of the lock to remove"),
):
    """
    Remove a convergence lock left behind by an interrupted run.
    """
    appctx: AppContext = ctx.obj
    key = appctx.repository.state_key

    with exit_on_error():
        store = appctx.backend.store
        held = [lock for lock in store.locks(key) if lock.lock_id == lock_id]
        if not held:
            die(f"No lock {lock_id} on {key}")
        lock = held[0]
        out.kv({"holder": lock.holder, "operation": lock.operation, "fence": lock.fence})
        store.break_lock(key, lock_id)
    out.success(f"Removed lock {lock_id}")


if __name__ == "__main__":
    app()
