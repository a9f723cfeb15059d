import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from neo4j import (
    WRITE_ACCESS,
    Bookmarks,
    Driver,
    GraphDatabase,
    ManagedTransaction,
    Session,
)
from neo4j.exceptions import DriverError, Neo4jError, SessionExpired

from ..config import ABSENT_DB_NAME, SYSTEM_DB_NAME, ConnectionConfig
from ..errors import CommandError, ExecutionInterrupted, add_suppressed
from ..interfaces import DatabaseManager, Parameters, TransactionHandler
from .results import BoltResult

logger = structlog.get_logger(__name__)

SERVER_AGENT_PREFIX = "Neo4j/"

DriverProvider = Callable[..., Driver]


class BoltStateHandler(TransactionHandler, DatabaseManager):
    """
    Owns the driver, the single live session and the explicit transaction.

    States: disconnected, connected without a transaction, connected with a
    transaction. Statements run while a transaction is open are queued and sent
    to the server together on commit, as one write transaction.
    """

    def __init__(
        self,
        is_interactive: bool,
        driver_provider: DriverProvider = GraphDatabase.driver,
    ):
        self.is_interactive = is_interactive
        self._driver_provider = driver_provider
        self._driver: Optional[Driver] = None
        self._session: Optional[Session] = None
        self._version: Optional[str] = None
        self._transaction_statements: Optional[List[Tuple[str, Parameters]]] = None
        self._active_database = ABSENT_DB_NAME
        self._actual_database: Optional[str] = None
        self._bookmarks: Optional[Bookmarks] = None
        self._connection_config: Optional[ConnectionConfig] = None
        # Set by reset() from the loop thread while a statement may be running
        # on a worker thread.
        self._reset_requested = threading.Event()

    # --- Connection lifecycle ---

    def is_connected(self) -> bool:
        return self._session is not None

    def connect(self, connection_config: ConnectionConfig) -> None:
        if self.is_connected():
            raise CommandError("Already connected")

        log = logger.bind(
            url=connection_config.driver_url, user=connection_config.username
        )
        log.debug("bolt.connect.begin")
        try:
            self.set_active_database(connection_config.database)
            self._connection_config = connection_config
            self._driver = self._get_driver(connection_config)
            self._reconnect()
        except Exception as e:
            try:
                self._silent_disconnect()
            except Exception as teardown_error:
                add_suppressed(e, teardown_error)
            log.debug("bolt.connect.failed", error=str(e))
            raise
        log.info(
            "bolt.connect.success",
            server_version=self.get_server_version(),
            database=self._actual_database,
        )

    def disconnect(self) -> None:
        """Closes the session and the driver. Safe to call when not connected."""
        self._silent_disconnect()
        self._transaction_statements = None
        logger.debug("bolt.disconnected")

    def _get_driver(self, connection_config: ConnectionConfig) -> Driver:
        return self._driver_provider(
            connection_config.driver_url,
            auth=(connection_config.username, connection_config.password),
            **connection_config.driver_options(),
        )

    def _reconnect(self) -> None:
        """
        Opens a fresh session against the active database, closing the current
        one first and carrying its bookmarks over, then pings the server to
        learn the actual database name and the server version.
        """
        if self._driver is None:
            # reset() closed the previous one.
            self._driver = self._get_driver(self._connection_config)

        # This already raises when there is no connectivity.
        self._driver.verify_connectivity()

        session_config: Dict[str, Any] = {"default_access_mode": WRITE_ACCESS}
        if self._active_database != ABSENT_DB_NAME:
            session_config["database"] = self._active_database
        if self._bookmarks is not None:
            session_config["bookmarks"] = self._bookmarks
        if self._session is not None:
            # After reset() its connection is already gone.
            if not self._reset_requested.is_set():
                self._session.close()
            self._session = None

        self._session = self._driver.session(**session_config)
        self._reset_requested.clear()

        query = (
            "SHOW DATABASES"
            if self._active_database.lower() == SYSTEM_DB_NAME
            else "RETURN 1"
        )
        # Cleared first so a failing ping leaves no stale name behind.
        self._actual_database = None
        summary = self._session.run(query).consume()
        self._version = summary.server.agent
        self._update_actual_database(summary.database)
        self._bookmarks = self._session.last_bookmarks()
        logger.debug("bolt.session.opened", database=self._actual_database)

    def _silent_disconnect(self) -> None:
        """Tears down session and driver without reporting anything."""
        session, driver = self._session, self._driver
        self._session = None
        self._driver = None
        self._actual_database = None
        self._bookmarks = None
        try:
            # After reset() the session's connection is already gone.
            if session is not None and not self._reset_requested.is_set():
                session.close()
        finally:
            self._reset_requested.clear()
            if driver is not None:
                driver.close()

    # --- DatabaseManager ---

    def set_active_database(self, database_name: str) -> None:
        if self.is_transaction_open():
            raise CommandError(
                "There is an open transaction. You need to close it before you can switch database."
            )
        previous_database = self._active_database
        self._active_database = database_name
        try:
            if self.is_connected():
                self._reconnect()
        except (Neo4jError, DriverError) as e:
            if self.is_interactive:
                # Try to get back to the database we came from.
                self._active_database = previous_database
                try:
                    self._reconnect()
                except (Neo4jError, DriverError) as restore_error:
                    add_suppressed(e, restore_error)
            raise

    def get_active_database(self) -> str:
        return self._active_database

    def get_actual_database(self) -> Optional[str]:
        return self._actual_database

    def _update_actual_database(self, database_name: Optional[str]) -> None:
        self._actual_database = (
            ABSENT_DB_NAME if database_name is None else database_name
        )

    def get_server_version(self) -> str:
        if not self.is_connected():
            return ""
        version = self._version or ""
        if version.startswith(SERVER_AGENT_PREFIX):
            # 'Neo4j/5.13.0' -> '5.13.0'
            version = version[len(SERVER_AGENT_PREFIX) :]
        return version

    # --- TransactionHandler ---

    def is_transaction_open(self) -> bool:
        return self._transaction_statements is not None

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise CommandError("Not connected to Neo4j")

    def begin_transaction(self) -> None:
        self._require_connected()
        if self.is_transaction_open():
            raise CommandError("There is already an open transaction")
        self._transaction_statements = []

    def commit_transaction(self) -> List[BoltResult]:
        self._require_connected()
        if not self.is_transaction_open():
            raise CommandError("There is no open transaction to commit")

        statements = self._transaction_statements
        try:
            if not statements:
                return []
            self._reopen_if_reset()
            with self._interruptible():
                results = self._session.execute_write(self._run_all, statements)
            self._bookmarks = self._session.last_bookmarks()
            return results
        finally:
            self._transaction_statements = None

    def rollback_transaction(self) -> None:
        self._require_connected()
        if not self.is_transaction_open():
            raise CommandError("There is no open transaction to rollback")
        self._transaction_statements = None

    def _run_all(
        self, tx: ManagedTransaction, statements: List[Tuple[str, Parameters]]
    ) -> List[BoltResult]:
        results = []
        for query, parameters in statements:
            result = BoltResult.from_result(tx.run(query, parameters))
            self._update_actual_database(result.summary.database)
            results.append(result)
        return results

    def get_transaction_statements(self) -> Optional[List[Tuple[str, Parameters]]]:
        return self._transaction_statements

    # --- Statement execution ---

    def run_statement(
        self, query: str, parameters: Optional[Parameters] = None
    ) -> Optional[BoltResult]:
        """
        Runs one statement. Inside an explicit transaction the statement is only
        queued and None is returned.
        """
        self._require_connected()
        parameters = dict(parameters or {})
        if self.is_transaction_open():
            self._transaction_statements.append((query, parameters))
            return None

        self._reopen_if_reset()
        with self._interruptible():
            try:
                return self._run_auto_commit(query, parameters)
            except SessionExpired:
                if self._reset_requested.is_set():
                    raise
                # The server no longer accepts writes on this session. Reconnect
                # and try once more; a second failure is the user's to handle.
                logger.warning("bolt.session_expired.retrying")
                self._reconnect()
                return self._run_auto_commit(query, parameters)

    def _run_auto_commit(self, query: str, parameters: Parameters) -> BoltResult:
        result = BoltResult.from_result(self._session.run(query, parameters))
        self._update_actual_database(result.summary.database)
        self._bookmarks = self._session.last_bookmarks()
        return result

    # --- Interruption ---

    def reset(self) -> None:
        """
        Aborts whatever the live session is doing.

        The sync driver cannot cancel a single session from another thread, so
        the driver is closed instead: that closes every pooled connection,
        including the one a running statement is blocked on, and the running
        call fails. An open transaction is dropped first. A new driver and
        session are opened before the next statement.
        """
        self._transaction_statements = None
        if not self.is_connected():
            return
        self._reset_requested.set()
        driver, self._driver = self._driver, None
        if driver is not None:
            driver.close()
        logger.debug("bolt.session.reset")

    def _reopen_if_reset(self) -> None:
        if self._reset_requested.is_set():
            self._reconnect()

    @contextmanager
    def _interruptible(self):
        """Reports failures caused by a concurrent reset() as an interruption."""
        try:
            yield
        except Exception as e:
            if self._reset_requested.is_set():
                raise ExecutionInterrupted("Execution interrupted") from e
            raise
