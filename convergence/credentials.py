"""
Credential providers injected into the engine at construction time.

Credentials are resolved once per run and passed along explicitly; nothing
here reads from or writes to the process environment on its own.
"""

from dataclasses import dataclass
from typing import Mapping, Protocol

from convergence.errors import ConfigError


@dataclass(frozen=True)
class Credentials:
    """
    Attributes:
        identity: Deployer identity (user or role session name).
        access_key_id: Access key of the session.
        secret_access_key: Secret of the session.
        session_token: Token for temporary credentials, if any.
    """

    identity: str
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str | None = None

    def __repr__(self) -> str:
        return f"Credentials(identity={self.identity!r})"


class CredentialProvider(Protocol):
    def resolve(self) -> Credentials: ...


class StaticCredentialProvider:
    """Credentials known up front (tests, local backend)."""

    def __init__(self, credentials: Credentials):
        self._credentials = credentials

    def resolve(self) -> Credentials:
        return self._credentials


class EnvironmentCredentialProvider:
    """
    Credentials read from an environment mapping handed in by the caller.

    ``STATIC_SITE_DEPLOYER`` names the identity; when absent the access key
    id is used, and failing that ``USER``.
    """

    def __init__(self, environ: Mapping[str, str]):
        self._environ = dict(environ)

    def resolve(self) -> Credentials:
        env = self._environ
        access_key = env.get("AWS_ACCESS_KEY_ID", "")
        identity = env.get("STATIC_SITE_DEPLOYER") or access_key or env.get("USER", "")
        if not identity:
            raise ConfigError("no deployer identity: set STATIC_SITE_DEPLOYER or AWS credentials")
        return Credentials(
            identity=identity,
            access_key_id=access_key,
            secret_access_key=env.get("AWS_SECRET_ACCESS_KEY", ""),
            session_token=env.get("AWS_SESSION_TOKEN") or None,
        )
