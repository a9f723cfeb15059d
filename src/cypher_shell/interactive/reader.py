from abc import ABC, abstractmethod
from typing import Optional, TextIO

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer

from ..history import Historian


class LineReader(ABC):
    """A source of physical input lines."""

    @abstractmethod
    def read_line(self, prompt: str) -> Optional[str]:
        """
        Returns the next line without its terminator, or None at end of input.

        Raises:
            KeyboardInterrupt: the user pressed Ctrl-C while editing the line.
        """
        raise NotImplementedError


class PromptToolkitReader(LineReader):
    """Reads from the terminal with line editing, completion and history."""

    def __init__(self, historian: Historian, completer: Optional[Completer] = None):
        self.session = PromptSession(
            history=historian,
            completer=completer,
            complete_while_typing=False,
            enable_history_search=False,
        )

    def read_line(self, prompt: str) -> Optional[str]:
        try:
            # Interrupts are delivered to the shell's own SIGINT handling.
            return self.session.prompt(prompt, handle_sigint=False)
        except EOFError:
            return None


class StreamLineReader(LineReader):
    """Reads lines from a file or a redirected stream. Prompts are not shown."""

    def __init__(self, stream: TextIO):
        self.stream = stream

    def read_line(self, prompt: str) -> Optional[str]:
        line = self.stream.readline()
        if not line:
            return None
        return line.rstrip("\r\n")
