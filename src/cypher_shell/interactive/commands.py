from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, List

from ..config import ABSENT_DB_NAME
from ..errors import CommandError, ExitRequested
from .messages import EXITING_MESSAGE
from .output_handler import format_value

if TYPE_CHECKING:
    from .executor import CypherShell


class Command(ABC):
    """Abstract base class for all colon commands of the shell."""

    name: str = ""
    aliases: List[str] = []
    description: str = ""
    usage: str = ""
    help: str = ""

    def __init__(self, shell: "CypherShell"):
        self.shell = shell

    @abstractmethod
    def execute(self, args: str) -> None:
        """Runs the command with the raw text that followed its name."""
        raise NotImplementedError

    def usage_error(self) -> CommandError:
        usage = f"{self.name} {self.usage}".strip()
        return CommandError(f"Incorrect number of arguments.\nusage: {usage}")

    def require_no_args(self, args: str) -> None:
        if args.strip():
            raise self.usage_error()


class ExitCommand(Command):
    name = ":exit"
    aliases = [":quit"]
    description = "Exit the shell"
    help = "Exit the shell. Corresponds to entering CTRL-D."

    def execute(self, args: str) -> None:
        self.require_no_args(args)
        self.shell.output.print_message(EXITING_MESSAGE)
        raise ExitRequested(0)


class HelpCommand(Command):
    name = ":help"
    aliases = [":man"]
    description = "Show this help message"
    usage = "[command]"
    help = "Show the list of available commands or help for a specific command."

    def execute(self, args: str) -> None:
        words = args.split()
        if len(words) > 1:
            raise self.usage_error()
        if words:
            command = self.shell.find_command(words[0])
            if command is None:
                raise CommandError(f"No such command: {words[0]}")
            usage = f"{command.name} {command.usage}".strip()
            self.shell.output.print_message(
                f"\nusage: {usage}\n\n{command.help or command.description}\n"
            )
            return

        rows = [[command.name, command.description] for command in self.shell.commands]
        self.shell.output.print_rows("Available commands", ["Command", "Description"], rows)
        self.shell.output.print_message(
            "For help on a specific command type:\n    :help command\n"
        )


class HistoryCommand(Command):
    name = ":history"
    description = "Print a list of the last commands executed"
    help = "Print a list of the last commands executed."

    def execute(self, args: str) -> None:
        self.require_no_args(args)
        if self.shell.historian is None:
            raise CommandError("History is not available in this session")
        rows = [
            [index, entry]
            for index, entry in enumerate(self.shell.historian.get_history(), start=1)
        ]
        self.shell.output.print_rows("History", ["#", "Entry"], rows)


class UseCommand(Command):
    name = ":use"
    description = "Set the active database"
    usage = "database"
    help = "Set the active database that transactions are executed on. Without a name the default database is used."

    def execute(self, args: str) -> None:
        words = args.split()
        if len(words) > 1:
            raise self.usage_error()
        database = words[0].strip("`") if words else ABSENT_DB_NAME
        self.shell.state.set_active_database(database)


class BeginCommand(Command):
    name = ":begin"
    description = "Open a transaction"
    help = "Start a transaction which will remain open until :commit or :rollback is called."

    def execute(self, args: str) -> None:
        self.require_no_args(args)
        self.shell.state.begin_transaction()


class CommitCommand(Command):
    name = ":commit"
    description = "Commit the currently open transaction"
    help = "Commit and close the currently open transaction."

    def execute(self, args: str) -> None:
        self.require_no_args(args)
        for result in self.shell.state.commit_transaction():
            self.shell.output.handle_result(result)


class RollbackCommand(Command):
    name = ":rollback"
    description = "Rollback the currently open transaction"
    help = "Roll back and close the currently open transaction."

    def execute(self, args: str) -> None:
        self.require_no_args(args)
        self.shell.state.rollback_transaction()


class ParamCommand(Command):
    name = ":param"
    description = "Set the value of a query parameter"
    usage = "name => value"
    help = (
        "Set the specified query parameter to the value given. Values are literals: "
        "numbers, quoted strings, lists, maps, true, false and null."
    )

    def execute(self, args: str) -> None:
        if not args.strip():
            raise self.usage_error()
        self.shell.parameters.set_parameter(args)


class ParamsCommand(Command):
    name = ":params"
    description = "Print all currently set query parameters and their values"
    usage = "[parameter]"
    help = "Print a table of all currently set query parameters or the value for the given parameter."

    def execute(self, args: str) -> None:
        words = args.split()
        if len(words) > 1:
            raise self.usage_error()
        if words:
            name = words[0].strip("`")
            value = self.shell.parameters.get(name)
            self.shell.output.print_message(f":param {name} => {format_value(value)}")
            return
        rows = [
            [name, format_value(value)]
            for name, value in sorted(self.shell.parameters.all().items())
        ]
        self.shell.output.print_rows("Parameters", ["Name", "Value"], rows)


COMMAND_CLASSES = [
    BeginCommand,
    CommitCommand,
    ExitCommand,
    HelpCommand,
    HistoryCommand,
    ParamCommand,
    ParamsCommand,
    RollbackCommand,
    UseCommand,
]


def build_command_registry(shell: "CypherShell") -> Dict[str, Command]:
    """Maps every command name and alias to its command instance."""
    registry: Dict[str, Command] = {}
    for command_class in COMMAND_CLASSES:
        command = command_class(shell)
        for name in [command.name, *command.aliases]:
            registry[name] = command
    return registry
