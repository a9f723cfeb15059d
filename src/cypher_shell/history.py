from pathlib import Path
from typing import Iterable, List, Optional

import structlog
from prompt_toolkit.history import FileHistory, History

logger = structlog.get_logger(__name__)

# Entries kept when the log is written back.
DEFAULT_HISTORY_SIZE = 500


class Historian(History):
    """
    The shell's statement history, shared with the prompt_toolkit line editor
    so the arrow keys walk through it.

    Entries are recorded explicitly by the shell runner once a statement
    boundary closes, never by the editor on its own. The log lives in memory
    and is written back by `flush_history()` in prompt_toolkit's `FileHistory`
    layout, where every line of an entry is prefixed with `+`. Multi-line
    statements therefore survive a round trip unchanged.
    """

    def __init__(
        self, history_file: Optional[Path] = None, max_entries: int = DEFAULT_HISTORY_SIZE
    ):
        super().__init__()
        self.history_file = history_file
        self.max_entries = max_entries
        self._entries: List[str] = self._read_history_file()

    def _read_history_file(self) -> List[str]:
        if self.history_file is None or not self.history_file.is_file():
            return []
        # FileHistory yields the most recent entry first.
        newest_first = list(FileHistory(str(self.history_file)).load_history_strings())
        return list(reversed(newest_first))[-self.max_entries :]

    # --- prompt_toolkit History interface ---

    def load_history_strings(self) -> Iterable[str]:
        # prompt_toolkit expects the most recent entry first.
        return list(reversed(self._entries))

    def append_string(self, string: str) -> None:
        """Lines accepted by the editor are recorded through `add_history` instead."""

    def store_string(self, string: str) -> None:
        """Persistence happens in bulk on `flush_history`."""

    # --- Shell interface ---

    def add_history(self, entry: str) -> None:
        self._entries.append(entry)
        if self._loaded:
            self._loaded_strings.insert(0, entry)

    def get_history(self) -> List[str]:
        return list(self._entries)

    def flush_history(self) -> None:
        """Writes the newest `max_entries` entries to the history file, replacing it."""
        if self.history_file is None:
            return
        self._entries = self._entries[-self.max_entries :]
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        self.history_file.write_bytes(b"")
        store = FileHistory(str(self.history_file))
        for entry in self._entries:
            store.store_string(entry)
        logger.debug(
            "history.flushed",
            path=str(self.history_file),
            entry_count=len(self._entries),
        )
