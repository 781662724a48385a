"""Read-only checks run before a deploy or destroy."""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from convergence.catalog import scan
from convergence.credentials import CredentialProvider
from convergence.errors import ConvergenceError
from convergence.repository import working_tree_problems
from convergence.state import StateStore


@dataclass(frozen=True)
class Check:
    name: str
    ok: bool
    detail: str = ""


def check_git(cwd: Path | str | None = None) -> Check:
    try:
        problems = working_tree_problems(cwd)
    except (OSError, subprocess.CalledProcessError):
        return Check("git", False, "not in a git repository")
    if problems:
        return Check("git", False, f"{len(problems)} uncommitted or untracked path(s)")
    return Check("git", True, "working tree is clean")


def check_credentials(credentials: CredentialProvider) -> Check:
    try:
        identity = credentials.resolve().identity
    except ConvergenceError as exc:
        return Check("credentials", False, str(exc))
    return Check("credentials", True, f"deploying as {identity}")


def check_backend(store_factory: Callable[[], StateStore], state_key: str) -> Check:
    try:
        state = store_factory().read(state_key)
    except ConvergenceError as exc:
        return Check("backend", False, str(exc))
    return Check("backend", True, f"{state_key} (serial {state.serial})")


def check_catalog(domains_root: Path | str) -> Check:
    try:
        domains = scan(domains_root)
    except ConvergenceError as exc:
        return Check("catalog", False, str(exc))
    if not domains:
        return Check("catalog", False, "no domains configured; run create-domain first")
    return Check("catalog", True, f"{len(domains)} domain tuple(s)")


def verify(
    domains_root: Path | str,
    credentials: CredentialProvider,
    store_factory: Callable[[], StateStore],
    state_key: str,
    cwd: Path | str | None = None,
) -> list[Check]:
    """Every check, in order; callers decide what a failure means."""
    return [
        check_git(cwd),
        check_credentials(credentials),
        check_backend(store_factory, state_key),
        check_catalog(domains_root),
    ]
