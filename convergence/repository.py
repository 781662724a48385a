"""
Repository identity: the catalog's git remote names the state and the project.

The state key and project name are derived from ``git remote get-url origin``
(``owner/repo``). Outside a git checkout, or without a parseable remote, the
identity is ``unknown/unknown``.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "static-website-infrastructure"

_REMOTE_RE = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def state_key(self) -> str:
        """``static-website-infrastructure/{owner}-{repo}/state``."""
        return f"{STATE_KEY_PREFIX}/{self.owner}-{self.name}/state"


UNKNOWN = Repository("unknown", "unknown")


def parse_remote(url: str) -> Repository:
    match = _REMOTE_RE.search(url.strip())
    if not match:
        return UNKNOWN
    return Repository(owner=match.group(1), name=match.group(2))


def parse_slug(slug: str) -> Repository:
    owner, _, name = slug.strip().partition("/")
    return Repository(owner, name) if owner and name else UNKNOWN


def _git(cwd: Path | str | None, *args: str) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout


def detect(cwd: Path | str | None = None) -> Repository:
    """Repository identity of the checkout at ``cwd``."""
    try:
        url = _git(cwd, "remote", "get-url", "origin")
    except (OSError, subprocess.CalledProcessError):
        logger.warning("Could not determine repository from git remote; using %s", UNKNOWN.slug)
        return UNKNOWN
    return parse_remote(url)


def working_tree_problems(cwd: Path | str | None = None) -> list[str]:
    """
    Uncommitted or untracked paths in the checkout at ``cwd``.

    Raises:
        OSError, subprocess.CalledProcessError: not a git checkout.
    """
    output = _git(cwd, "status", "--porcelain")
    return [line for line in output.splitlines() if line.strip()]
