import sys
from pathlib import Path
from typing import Callable, List, Optional, TextIO

import structlog
from neo4j import GraphDatabase
from neo4j.exceptions import AuthError
from prompt_toolkit import prompt
from rich.text import Text

from ..bolt.state_handler import BoltStateHandler, DriverProvider
from ..config import (
    ConnectionConfig,
    FailBehavior,
    OutputFormat,
    ShellSettings,
    get_history_file,
)
from ..errors import CommandError, ExitRequested
from ..history import Historian
from ..parameters import ParameterMap
from .completer import CypherCompleter
from .executor import CypherShell
from .messages import EXIT_MESSAGE, welcome_message
from .output_handler import RichConsoleHandler, error_console, format_error, resolve_format
from .reader import LineReader, PromptToolkitReader, StreamLineReader
from .runner import EXIT_FAILURE, EXIT_SUCCESS, InteractiveShellRunner

logger = structlog.get_logger(__name__)

TextPrompt = Callable[[str, bool], str]


def prompt_for_text(label: str, is_password: bool = False) -> str:
    """Asks the terminal for one value. Password input is masked."""
    try:
        return prompt(f"{label}: ", is_password=is_password)
    except EOFError as e:
        raise CommandError("No text could be read, exiting...") from e


def prompt_for_non_empty_text(label: str, ask: TextPrompt = prompt_for_text) -> str:
    while True:
        text = ask(label, False)
        if text:
            return text
        error_console.print(f"{label} cannot be empty\n", markup=False)


def connect_maybe_interactively(
    state: BoltStateHandler,
    connection_config: ConnectionConfig,
    input_interactive: bool,
    ask: TextPrompt = prompt_for_text,
) -> ConnectionConfig:
    """
    Connects, asking for missing credentials once if the server rejects the
    ones given. Returns the configuration that was finally used.
    """
    try:
        state.connect(connection_config)
        return connection_config
    except AuthError:
        # Credentials the user gave explicitly are never second-guessed.
        if connection_config.username and connection_config.password:
            raise
        # The answers could not be typed in when input is redirected.
        if not input_interactive:
            raise

    updates = {}
    if not connection_config.username:
        updates["username"] = prompt_for_non_empty_text("username", ask)
    if not connection_config.password:
        updates["password"] = ask("password", True)
    connection_config = connection_config.model_copy(update=updates)
    logger.debug("shell.connect.retrying", user=connection_config.username)
    state.connect(connection_config)
    return connection_config


def run_single_statement(shell: CypherShell, cypher: str) -> int:
    """Executes text given on the command line. No terminator is needed."""
    try:
        shell.execute(cypher)
    except ExitRequested as e:
        return e.code
    except Exception as e:
        logger.debug("shell.statement.failed", error=str(e))
        error_console.print(Text(format_error(e), style="red"))
        return EXIT_FAILURE
    return EXIT_SUCCESS


def start_shell(
    connection_config: ConnectionConfig,
    settings: ShellSettings,
    *,
    output_format: OutputFormat = OutputFormat.AUTO,
    fail_behavior: FailBehavior = FailBehavior.FAIL_FAST,
    cypher: Optional[str] = None,
    input_file: Optional[Path] = None,
    parameters: Optional[List[str]] = None,
    non_interactive: bool = False,
    stdin: TextIO = sys.stdin,
    stdout: TextIO = sys.stdout,
    driver_provider: DriverProvider = GraphDatabase.driver,
) -> int:
    """
    Connects and runs the shell until its input is exhausted. Returns the
    process exit code.
    """
    input_is_tty = stdin.isatty()
    interactive = (
        input_is_tty and not non_interactive and cypher is None and input_file is None
    )
    log = logger.bind(interactive=interactive)

    state = BoltStateHandler(interactive, driver_provider=driver_provider)
    parameter_map = ParameterMap()
    for expression in parameters or []:
        parameter_map.set_parameter(expression)
    historian = (
        Historian(get_history_file(settings), settings.history_size)
        if interactive
        else None
    )
    output = RichConsoleHandler(resolve_format(output_format, stdout.isatty()))
    shell = CypherShell(state, output, parameter_map, historian)

    try:
        connection_config = connect_maybe_interactively(
            state, connection_config, input_is_tty
        )
        if cypher is not None:
            log.debug("shell.mode", mode="single")
            return run_single_statement(shell, cypher)

        if input_file is not None:
            log.debug("shell.mode", mode="file", path=str(input_file))
            with open(input_file, "r", encoding="utf-8") as f:
                runner = _build_runner(
                    shell, state, StreamLineReader(f), None, connection_config,
                    settings, fail_behavior,
                )
                return runner.run_until_end()

        if not interactive:
            log.debug("shell.mode", mode="stream")
            runner = _build_runner(
                shell, state, StreamLineReader(stdin), None, connection_config,
                settings, fail_behavior,
            )
            return runner.run_until_end()

        log.debug("shell.mode", mode="interactive")
        completer = CypherCompleter(
            name
            for command in shell.commands
            for name in [command.name, *command.aliases]
        )
        runner = _build_runner(
            shell, state, PromptToolkitReader(historian, completer), historian,
            connection_config, settings, None,
        )
        try:
            return runner.run_until_end()
        finally:
            runner.flush_history()
    finally:
        state.disconnect()


def _build_runner(
    shell: CypherShell,
    state: BoltStateHandler,
    reader: LineReader,
    historian: Optional[Historian],
    connection_config: ConnectionConfig,
    settings: ShellSettings,
    fail_behavior: Optional[FailBehavior],
) -> InteractiveShellRunner:
    interactive = historian is not None
    return InteractiveShellRunner(
        shell,
        state,
        state,
        reader,
        historian,
        connection_config,
        fail_behavior=fail_behavior,
        max_prompt_length=settings.prompt_width,
        welcome_message=(
            welcome_message(connection_config, state.get_server_version())
            if interactive
            else None
        ),
        farewell_message=EXIT_MESSAGE if interactive else None,
    )
