import json
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from neo4j.exceptions import Neo4jError
from neo4j.graph import Node, Path, Relationship
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..bolt.results import BoltResult
from ..config import OutputFormat

# A single, shared console instance for all rich output in the shell
console = Console()
error_console = Console(stderr=True)

COUNTER_LABELS = [
    ("nodes_created", "Added {} nodes"),
    ("nodes_deleted", "Deleted {} nodes"),
    ("relationships_created", "Created {} relationships"),
    ("relationships_deleted", "Deleted {} relationships"),
    ("properties_set", "Set {} properties"),
    ("labels_added", "Added {} labels"),
    ("labels_removed", "Removed {} labels"),
    ("indexes_added", "Added {} indexes"),
    ("indexes_removed", "Removed {} indexes"),
    ("constraints_added", "Added {} constraints"),
    ("constraints_removed", "Removed {} constraints"),
]


def resolve_format(output_format: OutputFormat, is_output_interactive: bool) -> OutputFormat:
    """`auto` means tables on a terminal and plain rows when piped."""
    if output_format is OutputFormat.AUTO:
        return OutputFormat.VERBOSE if is_output_interactive else OutputFormat.PLAIN
    return output_format


def format_error(error: BaseException) -> str:
    """Driver errors are shown by their server message, everything else by its text."""
    if isinstance(error, Neo4jError) and error.message:
        return error.message
    return str(error) or type(error).__name__


def _format_properties(properties: dict) -> str:
    if not properties:
        return ""
    return " {" + ", ".join(f"{k}: {format_value(v)}" for k, v in properties.items()) + "}"


def format_value(value: Any) -> str:
    """Renders a result value roughly the way Cypher would write it."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, Node):
        labels = "".join(f":{label}" for label in sorted(value.labels))
        return f"({labels}{_format_properties(dict(value))})"
    if isinstance(value, Relationship):
        return f"[:{value.type}{_format_properties(dict(value))}]"
    if isinstance(value, Path):
        parts = [format_value(value.start_node)]
        for relationship, node in zip(value.relationships, value.nodes[1:]):
            if relationship.start_node is not None and relationship.start_node.element_id == node.element_id:
                parts.append(f"<-{format_value(relationship)}-")
            else:
                parts.append(f"-{format_value(relationship)}->")
            parts.append(format_value(node))
        return "".join(parts)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {format_value(v)}" for k, v in value.items()) + "}"
    return str(value)


class IOutputHandler(ABC):
    """
    Decouples the executor from the presentation layer, so results can be
    rendered to a terminal, a pipe or a test double in the same way.
    """

    @abstractmethod
    def handle_result(self, result: BoltResult) -> None:
        """Displays one query result."""
        pass

    @abstractmethod
    def print_message(self, message: str) -> None:
        pass

    @abstractmethod
    def print_rows(self, title: str, headers: Sequence[str], rows: List[Sequence[Any]]) -> None:
        """Displays shell-side data such as parameters or history."""
        pass


class RichConsoleHandler(IOutputHandler):
    """Renders results with rich: tables for `verbose`, comma-separated lines for `plain`."""

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.VERBOSE,
        output_console: Optional[Console] = None,
    ):
        self.output_format = output_format
        self.console = output_console or console

    def handle_result(self, result: BoltResult) -> None:
        rows = [[format_value(record[key]) for key in result.keys] for record in result.records]

        if self.output_format is OutputFormat.PLAIN:
            if result.keys:
                self.console.print(", ".join(result.keys), markup=False, highlight=False)
            for row in rows:
                self.console.print(", ".join(row), markup=False, highlight=False)
            return

        if result.keys:
            table = Table(box=box.ROUNDED, show_lines=False)
            for key in result.keys:
                table.add_column(key, style="cyan", overflow="fold")
            for row in rows:
                table.add_row(*(Text(cell) for cell in row))
            self.console.print(table)
        self.console.print(self._summary_text(result, len(rows)), style="dim")

    def _summary_text(self, result: BoltResult, row_count: int) -> str:
        summary = result.summary
        lines = [
            f"{row_count} row{'s' if row_count != 1 else ''}",
            f"ready to start consuming query after {summary.result_available_after} ms, "
            f"results consumed after another {summary.result_consumed_after} ms",
        ]
        counters = summary.counters
        updates = [
            label.format(getattr(counters, name))
            for name, label in COUNTER_LABELS
            if getattr(counters, name, 0)
        ]
        if updates:
            lines.append(", ".join(updates))
        return "\n".join(lines)

    def print_message(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False)

    def print_rows(self, title: str, headers: Sequence[str], rows: List[Sequence[Any]]) -> None:
        if self.output_format is OutputFormat.PLAIN:
            for row in rows:
                self.console.print(", ".join(str(cell) for cell in row), markup=False, highlight=False)
            return
        table = Table(title=f"[bold]{title}[/bold]", box=box.ROUNDED)
        for header in headers:
            table.add_column(str(header), style="cyan", overflow="fold")
        for row in rows:
            table.add_row(*(Text(str(cell)) for cell in row))
        self.console.print(table)
