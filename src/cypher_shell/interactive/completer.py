from typing import Iterable, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

CYPHER_KEYWORDS = [
    "CALL",
    "CREATE",
    "DELETE",
    "DETACH",
    "DISTINCT",
    "LIMIT",
    "MATCH",
    "MERGE",
    "OPTIONAL",
    "ORDER BY",
    "REMOVE",
    "RETURN",
    "SET",
    "SHOW",
    "SKIP",
    "UNION",
    "UNWIND",
    "WHERE",
    "WITH",
    "YIELD",
]


class CypherCompleter(Completer):
    """
    Suggests colon commands at the start of a line and Cypher keywords
    everywhere else.
    """

    def __init__(self, command_names: Iterable[str]):
        self.command_names: List[str] = sorted(command_names)

    def get_completions(self, document: Document, complete_event):
        text_before_cursor = document.text_before_cursor

        # --- Colon commands: only the first word of a line ---
        if text_before_cursor.lstrip().startswith(":"):
            stripped = text_before_cursor.lstrip()
            if " " not in stripped:
                for name in self.command_names:
                    if name.startswith(stripped):
                        yield Completion(
                            text=name,
                            start_position=-len(stripped),
                            display_meta="command",
                        )
            return

        word_before_cursor = document.get_word_before_cursor()
        if not word_before_cursor or not word_before_cursor.isalpha():
            return
        prefix = word_before_cursor.upper()
        for keyword in CYPHER_KEYWORDS:
            if keyword.startswith(prefix):
                yield Completion(
                    text=keyword, start_position=-len(word_before_cursor)
                )
