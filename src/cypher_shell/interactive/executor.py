from typing import Dict, List, Optional

import structlog

from ..bolt.state_handler import BoltStateHandler
from ..errors import CommandError, neo4j_error_code
from ..history import Historian
from ..interfaces import Executor
from ..parameters import ParameterMap
from .commands import Command, build_command_registry
from .output_handler import IOutputHandler, RichConsoleHandler

logger = structlog.get_logger(__name__)


class CypherShell(Executor):
    """
    Executes complete statements: colon commands are dispatched to the command
    registry, everything else is sent to the server as Cypher.
    """

    def __init__(
        self,
        state: BoltStateHandler,
        output: Optional[IOutputHandler] = None,
        parameters: Optional[ParameterMap] = None,
        historian: Optional[Historian] = None,
    ):
        self.state = state
        self.output = output or RichConsoleHandler()
        self.parameters = parameters if parameters is not None else ParameterMap()
        self.historian = historian
        self._registry: Dict[str, Command] = build_command_registry(self)
        self._last_error_code: Optional[str] = None

    @property
    def commands(self) -> List[Command]:
        """Every command once, in name order."""
        unique = {id(command): command for command in self._registry.values()}
        return sorted(unique.values(), key=lambda command: command.name)

    def find_command(self, name: str) -> Optional[Command]:
        if not name.startswith(":"):
            name = ":" + name
        return self._registry.get(name)

    def execute(self, statement: str) -> None:
        try:
            self._dispatch(statement)
        except Exception as e:
            self._last_error_code = neo4j_error_code(e)
            raise
        self._last_error_code = None

    def _dispatch(self, statement: str) -> None:
        text = statement.strip()
        if not text:
            return
        if text.startswith(":"):
            self._run_command(text)
        else:
            self._run_cypher(text)

    def _run_command(self, text: str) -> None:
        name, *rest = text.split(maxsplit=1)
        args = rest[0] if rest else ""
        command = self._registry.get(name)
        if command is None:
            raise CommandError(
                f"Could not find command {name}, use :help to see available commands"
            )
        logger.debug("executor.command", command=command.name)
        command.execute(args)

    def _run_cypher(self, text: str) -> None:
        query = text[:-1] if text.endswith(";") else text
        log = logger.bind(in_transaction=self.state.is_transaction_open())
        log.debug("executor.cypher", query=query)
        result = self.state.run_statement(query, self.parameters.all())
        if result is not None:
            self.output.handle_result(result)

    def last_error_code(self) -> Optional[str]:
        return self._last_error_code

    def reset(self) -> None:
        self.state.reset()
