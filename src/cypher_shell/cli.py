import functools
import logging
import sys
from pathlib import Path
from typing import List, Optional

import neo4j
import structlog
import typer
from rich.console import Console
from rich.traceback import Traceback

from cypher_shell import __version__
from cypher_shell.config import (
    FailBehavior,
    OutputFormat,
    build_connection_config,
    load_settings,
)
from cypher_shell.interactive.main import start_shell
from cypher_shell.state import APP_STATE

console = Console()


def setup_logging(verbose: bool):
    """
    Configures structlog for the entire application.
    - Default level: WARNING (stdout belongs to query results)
    - Verbose level: DEBUG (for troubleshooting)
    - All logs are routed to stderr to keep stdout clean for piping.
    """
    log_level = logging.DEBUG if verbose else logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    root_logger = logging.getLogger()
    # Drop handlers added by libraries or an earlier call; ConsoleRenderer formats everything.
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(logging.StreamHandler(sys.stderr))
    root_logger.setLevel(log_level)
    # The driver logs every Bolt message at DEBUG.
    logging.getLogger("neo4j").setLevel(logging.INFO if verbose else logging.WARNING)


def handle_exceptions(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        error_console = Console(stderr=True)
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            error_console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
            # Read from the central state object
            if APP_STATE.verbose_mode:
                error_console.print(
                    Traceback.from_exception(
                        type(e), e, e.__traceback__, show_locals=True
                    )
                )
            raise typer.Exit(code=1)

    return wrapper


# --- Main Application Definition ---
app = typer.Typer(
    name="cypher-shell",
    help="A command line shell where you can execute Cypher against an instance of Neo4j.\n\n"
    "By default the shell is interactive but you can use it for scripting by "
    "passing cypher directly on the command line or by piping a file with cypher statements.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.command()
@handle_exceptions
def main(
    cypher: Optional[str] = typer.Argument(
        None, help="An optional string of cypher to execute and then exit."
    ),
    address: Optional[str] = typer.Option(
        None,
        "--address",
        "-a",
        envvar="NEO4J_ADDRESS",
        help="Address and port to connect to: [scheme://][username:password@][host][:port]",
    ),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", envvar="NEO4J_USERNAME", help="Username to connect as."
    ),
    password: Optional[str] = typer.Option(
        None, "--password", "-p", envvar="NEO4J_PASSWORD", help="Password to connect with."
    ),
    encryption: Optional[bool] = typer.Option(
        None,
        "--encryption/--no-encryption",
        help="Whether the connection to Neo4j should be encrypted.",
    ),
    database: Optional[str] = typer.Option(
        None, "--database", "-d", envvar="NEO4J_DATABASE", help="Database to connect to."
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Pass a file with cypher statements to be executed. After the statements have been executed cypher-shell will be terminated.",
    ),
    fail_fast: bool = typer.Option(
        False, "--fail-fast", help="Exit and report failure on first error when reading from file (default)."
    ),
    fail_at_end: bool = typer.Option(
        False, "--fail-at-end", help="Exit and report failures at end of input when reading from file."
    ),
    output_format: Optional[OutputFormat] = typer.Option(
        None,
        "--format",
        case_sensitive=False,
        help="Desired output format: verbose displays results in tabular format, plain displays data with minimal formatting.",
    ),
    param: Optional[List[str]] = typer.Option(
        None,
        "--param",
        "-P",
        help="Add a parameter to this session. Example: `-P \"number => 3\"`. This argument can be specified multiple times.",
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Print additional debug information."
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Force non-interactive mode, only useful if auto-detection fails.",
    ),
    version: bool = typer.Option(
        False, "--version", "-v", help="Print version of cypher-shell and exit."
    ),
    driver_version: bool = typer.Option(
        False, "--driver-version", help="Print version of the Neo4j Driver used and exit."
    ),
):
    APP_STATE.verbose_mode = debug
    setup_logging(debug)

    if version:
        console.print(f"Cypher-Shell {__version__}", highlight=False)
    if driver_version:
        console.print(f"Neo4j Driver {neo4j.__version__}", highlight=False)
    if version or driver_version:
        return

    if fail_fast and fail_at_end:
        raise ValueError("--fail-fast and --fail-at-end cannot be used together")

    settings = load_settings()
    if fail_at_end:
        fail_behavior = FailBehavior.FAIL_AT_END
    elif fail_fast:
        fail_behavior = FailBehavior.FAIL_FAST
    else:
        fail_behavior = settings.fail_behavior

    connection_config = build_connection_config(
        settings,
        address=address,
        username=username,
        password=password,
        encryption=encryption,
        database=database,
    )
    code = start_shell(
        connection_config,
        settings,
        output_format=output_format or settings.format,
        fail_behavior=fail_behavior,
        cypher=cypher,
        input_file=file,
        parameters=param,
        non_interactive=non_interactive,
    )
    raise typer.Exit(code=code)
