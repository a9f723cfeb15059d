"""
Incremental statement-boundary detection.

Input arrives one physical line at a time. The accumulator tracks just enough
of the Cypher lexical structure (string literals, quoted identifiers,
comments and brackets) to know whether a `;` really terminates a statement.
"""

import re
from enum import Enum
from typing import List, Optional, Tuple

SEMICOLON = ";"
BACKSLASH = "\\"
LINE_SEPARATOR = "\n"
OPENING_BRACKETS = "([{"
CLOSING_BRACKETS = ")]}"

# A line starting with ':' outside of a statement is a shell command.
SHELL_COMMAND_PATTERN = re.compile(r"^\s*:.+$", re.DOTALL)


class LexMode(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "'"
    DOUBLE_QUOTE = '"'
    BACKTICK = "`"
    LINE_COMMENT = "//"
    BLOCK_COMMENT = "/*"


QUOTE_MODES = {
    "'": LexMode.SINGLE_QUOTE,
    '"': LexMode.DOUBLE_QUOTE,
    "`": LexMode.BACKTICK,
}


class StatementAccumulator:
    """
    Turns a stream of lines into complete statements.

    Every line after the first line of the statement being assembled is joined
    with a line break, so statements keep their original layout. Whitespace-only
    lines are dropped until the statement has started.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Forgets everything, as if no line had ever been fed."""
        self._buffer: List[str] = []
        self._mode = LexMode.NORMAL
        self._depth = 0
        self._started = False
        self._escaped = False
        self._previous = ""
        self._fresh = True

    @property
    def pending_text(self) -> str:
        return "".join(self._buffer)

    @property
    def mode(self) -> LexMode:
        return self._mode

    @property
    def bracket_depth(self) -> int:
        return self._depth

    def has_pending_text(self) -> bool:
        """True once a non-whitespace character of an unterminated statement has been seen."""
        return self._started

    def feed(
        self, line: str, first_line: Optional[bool] = None
    ) -> Tuple[List[str], bool]:
        """
        Consumes one physical line (without its line terminator).

        Args:
            line: The raw line as read.
            first_line: Whether the line starts a fresh buffer and must not be
                joined with a line break. Defaults to the accumulator's own
                tracking.

        Returns:
            The statements completed by this line, in order, and whether the
            buffer is empty afterwards.
        """
        if first_line is None:
            first_line = self._fresh

        if not self._started:
            if not line.strip():
                self.reset()
                return [], True
            if SHELL_COMMAND_PATTERN.match(line):
                self.reset()
                return [line], True

        self._fresh = False
        text = line if first_line else LINE_SEPARATOR + line
        statements = []
        for char in text:
            if self._consume(char):
                statements.append("".join(self._buffer))
                self._start_next_statement()
        return statements, not self._buffer

    def _start_next_statement(self) -> None:
        self._buffer = []
        self._started = False
        self._previous = ""

    def _consume(self, char: str) -> bool:
        """Appends one character and reports whether it terminated the statement."""
        self._buffer.append(char)
        if not char.isspace():
            self._started = True

        previous, self._previous = self._previous, char
        if self._escaped:
            self._escaped = False
            self._previous = ""
            return False

        mode = self._mode
        if mode is LexMode.LINE_COMMENT:
            if char == LINE_SEPARATOR:
                self._mode = LexMode.NORMAL
            return False
        if mode is LexMode.BLOCK_COMMENT:
            if previous == "*" and char == "/":
                self._mode = LexMode.NORMAL
                self._previous = ""
            return False
        if mode is LexMode.BACKTICK:
            if char == "`":
                self._mode = LexMode.NORMAL
            return False
        if mode in (LexMode.SINGLE_QUOTE, LexMode.DOUBLE_QUOTE):
            if char == BACKSLASH:
                self._escaped = True
            elif char == mode.value:
                self._mode = LexMode.NORMAL
            return False

        if char == BACKSLASH:
            self._escaped = True
        elif previous == "/" and char == "/":
            self._mode = LexMode.LINE_COMMENT
        elif previous == "/" and char == "*":
            self._mode = LexMode.BLOCK_COMMENT
            # The '*' of the opener cannot also close the comment.
            self._previous = ""
        elif char in QUOTE_MODES:
            self._mode = QUOTE_MODES[char]
        elif char in OPENING_BRACKETS:
            self._depth += 1
        elif char in CLOSING_BRACKETS:
            self._depth = max(0, self._depth - 1)
        elif char == SEMICOLON and self._depth == 0:
            return True
        return False
