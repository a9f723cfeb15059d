import signal
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import structlog
from rich.console import Console
from rich.text import Text
from rich.traceback import Traceback

from ..config import ABSENT_DB_NAME, ConnectionConfig, FailBehavior
from ..errors import (
    DATABASE_UNAVAILABLE_ERROR_CODE,
    ExitRequested,
    NoMoreInput,
)
from ..history import Historian
from ..interfaces import DatabaseManager, Executor, TransactionHandler
from ..parser import StatementAccumulator
from ..state import APP_STATE
from .messages import EXIT_MESSAGE, INTERRUPTED_MESSAGE
from .output_handler import console as default_console
from .output_handler import error_console as default_error_console
from .output_handler import format_error
from .reader import LineReader

logger = structlog.get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

DEFAULT_MAX_PROMPT_LENGTH = 50
DEFAULT_DATABASE_PLACEHOLDER = "<default_database>"

# How often the loop thread checks for a pending interrupt while a statement runs.
INTERRUPT_POLL_INTERVAL = 0.05


class InteractiveShellRunner:
    """
    The read-eval-print loop.

    Lines come from a `LineReader` and are fed to a `StatementAccumulator`; every
    completed statement is handed to the executor on a worker thread so that the
    loop thread stays free to react to Ctrl-C. Failures are printed and the loop
    moves on, unless a fail policy says otherwise.

    The same loop drives scripted input: with a `StreamLineReader` and a
    `fail_behavior` it stops at the first failure (fail-fast) or reports it in
    the exit code once the input is exhausted (fail-at-end).
    """

    def __init__(
        self,
        executor: Executor,
        transaction_handler: TransactionHandler,
        database_manager: DatabaseManager,
        reader: LineReader,
        historian: Optional[Historian] = None,
        connection_config: Optional[ConnectionConfig] = None,
        *,
        fail_behavior: Optional[FailBehavior] = None,
        console: Optional[Console] = None,
        error_console: Optional[Console] = None,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
        welcome_message: Optional[str] = None,
        farewell_message: Optional[str] = EXIT_MESSAGE,
    ):
        self.executor = executor
        self.transaction_handler = transaction_handler
        self.database_manager = database_manager
        self.reader = reader
        self.historian = historian
        self.connection_config = connection_config or ConnectionConfig()
        self.fail_behavior = fail_behavior
        self.console = console or default_console
        self.error_console = error_console or default_error_console
        self.max_prompt_length = max_prompt_length
        self.welcome_message = welcome_message
        self.farewell_message = farewell_message

        self.accumulator = StatementAccumulator()
        self._last_error_code: Optional[str] = None
        self._had_failure = False
        # Shared with the SIGINT handler; Events never block the handler.
        self._executing = threading.Event()
        self._cancel_requested = threading.Event()

    # --- Reading ---

    def read_until_statement(self) -> List[str]:
        """
        Reads lines until at least one statement is complete and returns all
        statements completed by the last line.

        Raises:
            NoMoreInput: the input ended, possibly in the middle of a statement.
        """
        while True:
            line = self.reader.read_line(self.update_and_get_prompt())
            if line is None:
                if self.accumulator.has_pending_text():
                    logger.debug(
                        "runner.input.incomplete",
                        discarded=self.accumulator.pending_text,
                    )
                raise NoMoreInput()

            statements, _ = self.accumulator.feed(line)
            if statements:
                self._record_history(statements)
                return statements

    def _record_history(self, statements: List[str]) -> None:
        """Adds each statement, exactly as it was accumulated, before it runs."""
        if self.historian is None:
            return
        for statement in statements:
            self.historian.add_history(statement)

    # --- Loop ---

    def run_until_end(self) -> int:
        """Runs until the input ends or a statement asks to exit. Returns the exit code."""
        if self.welcome_message:
            self.console.print(self.welcome_message, markup=False, highlight=False)

        with self._interrupt_handler():
            exit_code = self._loop()
        logger.debug("runner.finished", exit_code=exit_code)
        return exit_code

    def _loop(self) -> int:
        while True:
            try:
                for statement in self.read_until_statement():
                    if not self._run_statement(statement):
                        return EXIT_FAILURE
            except ExitRequested as e:
                return e.code
            except NoMoreInput:
                if self.farewell_message:
                    self.console.print(
                        self.farewell_message, markup=False, highlight=False
                    )
                return EXIT_FAILURE if self._had_failure else EXIT_SUCCESS
            except KeyboardInterrupt:
                # Ctrl-C while editing a line: drop whatever was typed so far.
                self.accumulator.reset()
                self._print_interrupted()
            finally:
                self._probe_error_code()

    def _run_statement(self, statement: str) -> bool:
        """Executes one statement. Returns False when the loop must stop."""
        log = logger.bind(statement=statement)
        try:
            self._execute(statement)
            log.debug("runner.statement.succeeded")
            return True
        except ExitRequested:
            raise
        except Exception as e:
            log.debug("runner.statement.failed", error=str(e))
            self._print_error(e)
            if self.fail_behavior is not None:
                self._had_failure = True
            return self.fail_behavior is not FailBehavior.FAIL_FAST

    def _execute(self, statement: str) -> None:
        """
        Runs the statement on a worker thread and waits for it. A pending
        interrupt is turned into exactly one `reset()` of the executor, which
        makes the running call fail and the worker finish. The worker is always
        waited for, even when the reset itself fails.
        """
        outcome: Dict[str, Any] = {}
        finished = threading.Event()

        def work():
            try:
                self.executor.execute(statement)
            except BaseException as e:
                outcome["error"] = e
            finally:
                finished.set()

        self._cancel_requested.clear()
        self._executing.set()
        worker = threading.Thread(
            target=work, name="cypher-shell-statement", daemon=True
        )
        worker.start()
        try:
            reset_sent = False
            while not finished.wait(INTERRUPT_POLL_INTERVAL):
                if self._cancel_requested.is_set() and not reset_sent:
                    reset_sent = True
                    logger.debug("runner.statement.cancelling")
                    try:
                        self.executor.reset()
                    except Exception as e:
                        # The statement still owns the session: wait it out.
                        logger.warning("runner.statement.reset_failed", error=str(e))
        finally:
            self._executing.clear()
        worker.join()

        if "error" in outcome:
            raise outcome["error"]

    def is_executing(self) -> bool:
        return self._executing.is_set()

    def _probe_error_code(self) -> None:
        self._last_error_code = self.executor.last_error_code()

    # --- Signals ---

    def handle_interrupt(self, signum=None, frame=None) -> None:
        """
        SIGINT handler. While a statement runs it only posts a cancellation
        request for the loop thread; otherwise it reminds the user how
        statements end.
        """
        if self._executing.is_set():
            self._cancel_requested.set()
            return
        self._print_interrupted()
        self._probe_error_code()

    def _print_interrupted(self) -> None:
        self.error_console.print(Text("\n" + INTERRUPTED_MESSAGE, style="red"))

    @contextmanager
    def _interrupt_handler(self):
        """Routes SIGINT to `handle_interrupt` for the duration of the loop."""
        if threading.current_thread() is not threading.main_thread():
            # Signal handlers can only be installed from the main thread.
            yield
            return
        previous = signal.signal(signal.SIGINT, self.handle_interrupt)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)

    # --- Output ---

    def update_and_get_prompt(self) -> str:
        """
        The prompt for the next line: `user@database> `, with `#` instead of
        `>` inside a transaction, on two lines when it gets long. Continuation
        lines get blank padding of the same width.
        """
        prompt_text = self._prompt_text()
        suffix = "# " if self.transaction_handler.is_transaction_open() else "> "
        wraps = len(prompt_text) + len(suffix) > self.max_prompt_length

        if self.accumulator.has_pending_text():
            return "" if wraps else " " * (len(prompt_text) + len(suffix))
        if wraps:
            return f"{prompt_text}\n{suffix}"
        return prompt_text + suffix

    def _prompt_text(self) -> str:
        username = self.connection_config.username
        database = self.database_manager.get_actual_database()
        if database is None or database == ABSENT_DB_NAME:
            # The server has not told us which database we are on.
            requested = self.database_manager.get_active_database()
            database = requested or DEFAULT_DATABASE_PLACEHOLDER
            database += self._error_marker()
        return f"{username}@{database}"

    def _error_marker(self) -> str:
        if self._last_error_code is None:
            return ""
        if self._last_error_code == DATABASE_UNAVAILABLE_ERROR_CODE:
            return "[UNAVAILABLE]"
        return "[ERROR]"

    def _print_error(self, error: BaseException) -> None:
        self.error_console.print(Text(format_error(error), style="red"))
        if APP_STATE.verbose_mode:
            self.error_console.print(
                Traceback.from_exception(type(error), error, error.__traceback__)
            )

    def flush_history(self) -> None:
        if self.historian is not None:
            self.historian.flush_history()
