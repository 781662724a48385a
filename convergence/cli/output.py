"""Output formatting for the CLI."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_ACTION_STYLES = {"create": "ok", "update": "warn", "delete": "err"}
_STATUS_STYLES = {
    "converged": "ok",
    "destroyed": "ok",
    "unchanged": "meta",
    "failed": "err",
}


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through Rich; DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def info(self, msg: str) -> None:
        console.print(f"[title]ℹ[/] {msg}")

    def success(self, msg: str) -> None:
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        console.print(f"[err]✗[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        with console.status(msg):
            yield

    def header(self, title: str) -> None:
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def plan_table(self, operations: Iterable[Any], title: str = "Plan") -> None:
        """Expects objects with .action .address .kind (convergence.plan.Operation)."""
        t = Table(title=title, show_lines=False)
        t.add_column("#", style="meta", justify="right")
        t.add_column("Action")
        t.add_column("Address", style="title")
        t.add_column("Kind", style="meta")

        for index, op in enumerate(operations, start=1):
            action = op.action.value
            style = _ACTION_STYLES.get(action, "meta")
            t.add_row(str(index), f"[{style}]{action}[/{style}]", op.address, op.kind)

        console.print(t)

    def report_table(self, results: Iterable[Any], title: str = "Domains") -> None:
        """Expects convergence.engine.DomainResult objects."""
        t = Table(title=title, show_lines=False)
        t.add_column("Domain", style="title", no_wrap=True)
        t.add_column("Environment")
        t.add_column("Status")
        t.add_column("Registry", style="meta")
        t.add_column("Error", style="err")

        for r in results:
            status = r.status.value
            style = _STATUS_STYLES.get(status, "meta")
            t.add_row(
                r.domain_name,
                r.environment,
                f"[{style}]{status}[/{style}]",
                ", ".join(r.registry_changes) or "-",
                f"{r.error_type}: {r.error}" if r.error else "",
            )

        console.print(t)

    def deployed_table(
        self,
        domains: Mapping[str, Mapping[str, Any]],
        registry_counts: Mapping[str, int],
        title: str = "Deployed domains",
    ) -> None:
        """Expects the mapping built by convergence.engine.deployed_domains."""
        t = Table(title=title, show_lines=False)
        t.add_column("Key", style="meta", no_wrap=True)
        t.add_column("Domain", style="title")
        t.add_column("Env")
        t.add_column("Bucket")
        t.add_column("Distribution")
        t.add_column("Certificate", style="meta")
        t.add_column("Zone")
        t.add_column("Registry", justify="right")

        for key, d in domains.items():
            certificate = str(d.get("certificate_arn") or "-").rsplit("/", 1)[-1]
            count = registry_counts.get(str(d.get("domain_name")), 0)
            t.add_row(
                key,
                str(d.get("domain_name") or "-"),
                str(d.get("environment") or "-"),
                str(d.get("bucket_name") or "-"),
                str(d.get("cloudfront_distribution_id") or "-"),
                certificate,
                str(d.get("hosted_zone_id") or "-"),
                str(count),
            )

        console.print(t)

    def resources_table(self, records: Iterable[Any], title: str = "Resources") -> None:
        """Expects convergence.state.ResourceRecord objects."""
        t = Table(title=title, show_lines=False)
        t.add_column("Address", style="title", no_wrap=True)
        t.add_column("Kind", style="meta")
        t.add_column("Name")

        for r in records:
            t.add_row(r.address, r.kind, r.name)

        console.print(t)

    def checks(self, checks: Iterable[Any]) -> None:
        """Expects convergence.prerequisites.Check objects."""
        for check in checks:
            if check.ok:
                self.success(f"{check.name}: {check.detail}")
            else:
                self.error(f"{check.name}: {check.detail}")


out = Out()
