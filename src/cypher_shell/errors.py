from typing import Optional

from neo4j.exceptions import Neo4jError, ServiceUnavailable, SessionExpired

DATABASE_UNAVAILABLE_ERROR_CODE = "Neo.TransientError.General.DatabaseUnavailable"


class ShellError(Exception):
    """Base class for errors raised by the shell itself (not the driver)."""


class CommandError(ShellError):
    """
    A command could not run in the current state: not connected, already
    connected, a transaction is (or is not) open, or the command was used
    incorrectly. Always reported to the user; the shell keeps running.
    """


class ExecutionInterrupted(CommandError):
    """The running statement was cancelled by an interrupt signal."""


class NoMoreInput(ShellError):
    """The input stream is exhausted."""


class ExitRequested(ShellError):
    """A command asked the shell to stop with the given exit code."""

    def __init__(self, code: int = 0):
        super().__init__(f"Exit requested with code {code}")
        self.code = code


def add_suppressed(error: BaseException, suppressed: BaseException) -> None:
    """
    Attaches a secondary failure to `error` without replacing it.

    The secondary exception is kept on `error.suppressed` and summarised in the
    exception notes so it shows up in tracebacks.
    """
    error.suppressed = [*getattr(error, "suppressed", []), suppressed]
    error.add_note(f"Suppressed: {type(suppressed).__name__}: {suppressed}")


def neo4j_error_code(error: BaseException) -> Optional[str]:
    """Returns the Neo4j status code carried by an error, if any."""
    if isinstance(error, Neo4jError):
        return error.code
    if isinstance(error, (ServiceUnavailable, SessionExpired)):
        return DATABASE_UNAVAILABLE_ERROR_CODE
    return None
