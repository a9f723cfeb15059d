from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class Executor(ABC):
    """The contract the shell runner uses to execute one statement."""

    @abstractmethod
    def execute(self, statement: str) -> None:
        """
        Executes a complete statement (Cypher or a `:command`).

        Raises:
            ExitRequested: the statement asked the shell to exit.
            Exception: any other failure; the runner reports it and moves on.
        """
        raise NotImplementedError

    @abstractmethod
    def last_error_code(self) -> Optional[str]:
        """The Neo4j status code of the most recent failure, or None after a success."""
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """Abandons whatever is executing and rolls back partial server-side work."""
        raise NotImplementedError


class TransactionHandler(ABC):
    @abstractmethod
    def begin_transaction(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def commit_transaction(self) -> List[Any]:
        raise NotImplementedError

    @abstractmethod
    def rollback_transaction(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_transaction_open(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError


class DatabaseManager(ABC):
    @abstractmethod
    def set_active_database(self, database_name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_active_database(self) -> str:
        """The database name as requested by the user (may be empty for the default)."""
        raise NotImplementedError

    @abstractmethod
    def get_actual_database(self) -> Optional[str]:
        """The database name as reported by the server, None until it has answered."""
        raise NotImplementedError


Parameters = Dict[str, Any]
