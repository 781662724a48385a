"""Exit handling utilities for the CLI."""

from contextlib import contextmanager
from typing import Iterator, NoReturn

import typer

from convergence.cli.output import out
from convergence.errors import ConvergenceError


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(0)


def die(msg: str, code: int = 1) -> NoReturn:
    """Exit with an error message and optional exit code."""
    out.error(msg)
    raise typer.Exit(code)


def exit_from_exc(exc: Exception, *, message: str | None = None, code: int = 1) -> NoReturn:
    """Print ``message`` (or the exception) and exit with ``code``, chaining ``exc``."""
    out.error(message or f"{type(exc).__name__}: {exc}")
    raise typer.Exit(code) from exc


def warn_exit(msg: str, code: int = 0) -> NoReturn:
    """Exit with a warning message and optional exit code."""
    out.warn(msg)
    raise typer.Exit(code)


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Report a ConvergenceError by name and exit with code 1."""
    try:
        yield
    except ConvergenceError as exc:
        exit_from_exc(exc, message=f"{type(exc).__name__}: {exc}")
