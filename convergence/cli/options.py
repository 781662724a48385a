"""Common CLI options."""

import typer

DomainsRootOpt = typer.Option(
    None,
    "--domains-root",
    help="Directory holding {domain}/{environment}/domain.toml declarations",
)

StateDirOpt = typer.Option(
    None,
    "--state-dir",
    help="Directory of the local backend",
)

BackendOpt = typer.Option(
    None,
    "--backend",
    "-b",
    help="Backend name: local or memory",
)

VerboseOpt = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Debug logging",
)

DomainOpt = typer.Option(
    [],
    "--domain",
    "-d",
    help="Limit to this domain name or tuple key. This is reusable.",
    show_default=False,
)

EnvironmentOpt = typer.Option(
    "prd",
    "--environment",
    "-e",
    help="Environment of the new declaration",
)

ConfirmTokenOpt = typer.Option(
    None,
    "--confirm",
    help="Confirmation token; skips the interactive prompt",
)

DestroyPlanOpt = typer.Option(
    False,
    "--destroy",
    help="Preview a destroy instead of an apply",
)

SkipChecksOpt = typer.Option(
    False,
    "--skip-checks",
    help="Do not verify prerequisites before destroying",
)

__all__ = [
    "BackendOpt",
    "ConfirmTokenOpt",
    "DestroyPlanOpt",
    "DomainOpt",
    "DomainsRootOpt",
    "EnvironmentOpt",
    "SkipChecksOpt",
    "StateDirOpt",
    "VerboseOpt",
]
