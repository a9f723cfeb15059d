import pytest
from neo4j import WRITE_ACCESS, Driver, Session
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from cypher_shell.bolt.results import BoltResult
from cypher_shell.bolt.state_handler import BoltStateHandler
from cypher_shell.config import ConnectionConfig
from cypher_shell.errors import CommandError, ExecutionInterrupted

CONFIG = ConnectionConfig(username="neo4j", password="secret")


@pytest.fixture
def handler(driver_provider) -> BoltStateHandler:
    return BoltStateHandler(is_interactive=True, driver_provider=driver_provider)


@pytest.fixture
def connected(handler: BoltStateHandler) -> BoltStateHandler:
    handler.connect(CONFIG)
    return handler


# --- Connecting ---


def test_connect_opens_a_write_session(handler: BoltStateHandler, fake_driver):
    handler.connect(CONFIG)

    assert handler.is_connected()
    assert fake_driver.url == "neo4j://localhost:7687"
    assert fake_driver.auth == ("neo4j", "secret")
    assert fake_driver.options == {"encrypted": False}
    assert fake_driver.current_session.config == {"default_access_mode": WRITE_ACCESS}
    assert fake_driver.current_session.queries == [("RETURN 1", None)]
    assert handler.get_actual_database() == "neo4j"
    assert handler.get_server_version() == "5.13.0"


def test_secure_scheme_leaves_encryption_to_the_driver(handler: BoltStateHandler, fake_driver):
    handler.connect(CONFIG.model_copy(update={"scheme": "neo4j+s", "encryption": True}))

    assert fake_driver.url == "neo4j+s://localhost:7687"
    assert fake_driver.options == {}


def test_connect_to_system_database_pings_with_show_databases(handler: BoltStateHandler, fake_driver):
    handler.connect(CONFIG.model_copy(update={"database": "system"}))

    assert fake_driver.current_session.config["database"] == "system"
    assert fake_driver.current_session.queries == [("SHOW DATABASES", None)]
    assert handler.get_actual_database() == "system"


def test_connect_twice_fails(connected: BoltStateHandler):
    with pytest.raises(CommandError, match="Already connected"):
        connected.connect(CONFIG)


def test_failed_connect_tears_down(handler: BoltStateHandler, fake_driver):
    fake_driver.connectivity_errors.append(ServiceUnavailable("Unable to connect"))

    with pytest.raises(ServiceUnavailable, match="Unable to connect"):
        handler.connect(CONFIG)

    assert not handler.is_connected()
    assert fake_driver.closed
    assert handler.get_server_version() == ""


def test_teardown_failure_is_attached_to_connect_error(handler: BoltStateHandler, fake_driver):
    """Unit Test: the original failure is raised, the cleanup failure rides along."""
    fake_driver.fail_next(ServiceUnavailable("Ping failed"), query="RETURN 1")
    fake_driver.close_session_failure = RuntimeError("close failed")

    with pytest.raises(ServiceUnavailable, match="Ping failed") as exc_info:
        handler.connect(CONFIG)

    suppressed = exc_info.value.suppressed
    assert len(suppressed) == 1
    assert str(suppressed[0]) == "close failed"
    assert any("close failed" in note for note in exc_info.value.__notes__)
    assert fake_driver.closed
    assert not handler.is_connected()


def test_disconnect(connected: BoltStateHandler, fake_driver):
    session = fake_driver.current_session

    connected.disconnect()

    assert session.closed
    assert fake_driver.closed
    assert not connected.is_connected()
    assert connected.get_actual_database() is None


# --- Switching databases ---


def test_switch_database_reconnects_with_bookmark(connected: BoltStateHandler, fake_driver):
    old_session = fake_driver.current_session
    bookmark = old_session.last_bookmarks()

    connected.set_active_database("movies")

    assert old_session.closed
    new_session = fake_driver.current_session
    assert new_session.config["database"] == "movies"
    assert new_session.config["bookmarks"] == bookmark
    assert connected.get_actual_database() == "movies"


def test_switch_database_with_open_transaction_fails(connected: BoltStateHandler):
    connected.begin_transaction()

    with pytest.raises(CommandError, match="open transaction"):
        connected.set_active_database("movies")
    assert connected.get_active_database() == ""


def test_failed_switch_restores_previous_database_when_interactive(connected: BoltStateHandler, fake_driver):
    fake_driver.fail_next(ServiceUnavailable("No such database"), query="RETURN 1")

    with pytest.raises(ServiceUnavailable, match="No such database"):
        connected.set_active_database("missing")

    assert connected.get_active_database() == ""
    assert connected.is_connected()
    assert "database" not in fake_driver.current_session.config
    assert connected.get_actual_database() == "neo4j"


def test_failed_restore_is_attached_to_switch_error(connected: BoltStateHandler, fake_driver):
    fake_driver.fail_next(ServiceUnavailable("No such database"), query="RETURN 1")
    fake_driver.fail_next(ServiceUnavailable("Restore failed"), query="RETURN 1")

    with pytest.raises(ServiceUnavailable, match="No such database") as exc_info:
        connected.set_active_database("missing")

    assert [str(e) for e in exc_info.value.suppressed] == ["Restore failed"]
    assert connected.get_active_database() == ""


def test_failed_switch_is_not_restored_when_not_interactive(driver_provider, fake_driver):
    handler = BoltStateHandler(is_interactive=False, driver_provider=driver_provider)
    handler.connect(CONFIG)
    sessions_before = len(fake_driver.sessions)
    fake_driver.fail_next(ServiceUnavailable("No such database"), query="RETURN 1")

    with pytest.raises(ServiceUnavailable):
        handler.set_active_database("missing")

    assert handler.get_active_database() == "missing"
    assert len(fake_driver.sessions) == sessions_before + 1


# --- Transactions ---


def test_transaction_commands_require_a_connection(handler: BoltStateHandler):
    with pytest.raises(CommandError, match="Not connected to Neo4j"):
        handler.begin_transaction()
    with pytest.raises(CommandError, match="Not connected to Neo4j"):
        handler.commit_transaction()
    with pytest.raises(CommandError, match="Not connected to Neo4j"):
        handler.rollback_transaction()


def test_begin_twice_fails(connected: BoltStateHandler):
    connected.begin_transaction()

    with pytest.raises(CommandError, match="There is already an open transaction"):
        connected.begin_transaction()


def test_commit_without_transaction_fails(connected: BoltStateHandler):
    with pytest.raises(CommandError, match="There is no open transaction to commit"):
        connected.commit_transaction()


def test_rollback_without_transaction_fails(connected: BoltStateHandler):
    with pytest.raises(CommandError, match="There is no open transaction to rollback"):
        connected.rollback_transaction()


def test_empty_commit_returns_nothing(connected: BoltStateHandler, fake_driver):
    connected.begin_transaction()

    assert connected.commit_transaction() == []
    assert not connected.is_transaction_open()
    assert fake_driver.current_session.write_transactions == 0


def test_statements_are_queued_until_commit(connected: BoltStateHandler, fake_driver):
    connected.begin_transaction()

    assert connected.run_statement("CREATE (n)", {"a": 1}) is None
    assert connected.run_statement("RETURN 2") is None
    assert ("CREATE (n)", {"a": 1}) not in fake_driver.all_queries

    results = connected.commit_transaction()

    assert [r.records[0]["n"] for r in results] == ["CREATE (n)", "RETURN 2"]
    assert fake_driver.current_session.write_transactions == 1
    assert not connected.is_transaction_open()


def test_failed_commit_still_closes_transaction(connected: BoltStateHandler, fake_driver):
    connected.begin_transaction()
    connected.run_statement("CREATE (n)")
    fake_driver.fail_next(ServiceUnavailable("Lost"), query="CREATE (n)")

    with pytest.raises(ServiceUnavailable):
        connected.commit_transaction()

    assert not connected.is_transaction_open()


def test_rollback_discards_queue(connected: BoltStateHandler):
    connected.begin_transaction()
    connected.run_statement("CREATE (n)")

    connected.rollback_transaction()

    assert not connected.is_transaction_open()
    assert connected.get_transaction_statements() is None


# --- Auto-commit statements ---


def test_run_statement_returns_consumed_result(connected: BoltStateHandler):
    result = connected.run_statement("MATCH (n) RETURN n", {"x": 1})

    assert isinstance(result, BoltResult)
    assert result.keys == ["n"]
    assert result.records == [{"n": "MATCH (n) RETURN n"}]


def test_expired_session_is_retried_once(connected: BoltStateHandler, fake_driver):
    """Unit Test: a broken session is replaced, with its bookmark, and the statement re-run."""
    old_session = fake_driver.current_session
    fake_driver.fail_next(SessionExpired("Leader switched"), query="MATCH (n) RETURN n")

    result = connected.run_statement("MATCH (n) RETURN n")

    assert result.records == [{"n": "MATCH (n) RETURN n"}]
    assert old_session.closed
    new_session = fake_driver.current_session
    assert new_session is not old_session
    assert new_session.config["bookmarks"] == "bookmark:1"
    assert new_session.queries == [("RETURN 1", None), ("MATCH (n) RETURN n", {})]


def test_second_expiry_is_propagated(connected: BoltStateHandler, fake_driver):
    fake_driver.fail_next(SessionExpired("Leader switched"), query="MATCH (n) RETURN n")
    fake_driver.fail_next(SessionExpired("Still switching"), query="MATCH (n) RETURN n")

    with pytest.raises(SessionExpired, match="Still switching"):
        connected.run_statement("MATCH (n) RETURN n")

    runs = [q for q, _ in fake_driver.all_queries if q == "MATCH (n) RETURN n"]
    assert len(runs) == 2


def test_other_failures_are_not_retried(connected: BoltStateHandler, fake_driver):
    fake_driver.fail_next(ServiceUnavailable("Down"), query="MATCH (n) RETURN n")

    with pytest.raises(ServiceUnavailable):
        connected.run_statement("MATCH (n) RETURN n")

    runs = [q for q, _ in fake_driver.all_queries if q == "MATCH (n) RETURN n"]
    assert len(runs) == 1


# --- Reset ---


def test_reset_closes_driver_and_drops_transaction(connected: BoltStateHandler, fake_driver):
    connected.begin_transaction()
    connected.run_statement("CREATE (n)")

    connected.reset()

    assert fake_driver.closed
    assert not connected.is_transaction_open()


def test_reset_uses_only_the_real_session_api(connected: BoltStateHandler, fake_driver, mocker):
    """A running statement is aborted without calling anything the sync Session lacks."""
    session = mocker.create_autospec(Session, instance=True)
    connected._session = session
    connected.begin_transaction()

    connected.reset()

    assert not connected.is_transaction_open()
    assert fake_driver.closed
    assert session.mock_calls == []


def test_session_is_reopened_after_reset(connected: BoltStateHandler, fake_driver):
    interrupted_session = fake_driver.current_session
    connected.reset()

    connected.run_statement("RETURN 2")

    assert fake_driver.times_provided == 2
    assert not fake_driver.closed
    assert not interrupted_session.closed
    assert fake_driver.current_session is not interrupted_session
    assert fake_driver.current_session.queries[-1] == ("RETURN 2", {})


def test_failed_reopen_is_retried_on_next_statement(connected: BoltStateHandler, fake_driver):
    connected.reset()
    fake_driver.connectivity_errors.append(ServiceUnavailable("still down"))

    with pytest.raises(ServiceUnavailable):
        connected.run_statement("RETURN 1")
    connected.run_statement("RETURN 2")

    assert fake_driver.times_provided == 2
    assert fake_driver.current_session.queries[-1] == ("RETURN 2", {})


def test_disconnect_after_reset(connected: BoltStateHandler, fake_driver):
    interrupted_session = fake_driver.current_session
    connected.reset()

    connected.disconnect()

    assert not connected.is_connected()
    assert not interrupted_session.closed


def test_failure_caused_by_reset_is_an_interruption(connected: BoltStateHandler, fake_driver):
    session = fake_driver.current_session

    def run_until_cancelled(query, parameters=None):
        connected.reset()
        raise ServiceUnavailable("Connection closed")

    session.run = run_until_cancelled

    with pytest.raises(ExecutionInterrupted):
        connected.run_statement("MATCH (n) RETURN n")


def test_reset_when_disconnected_does_nothing(handler: BoltStateHandler):
    handler.reset()

    assert not handler.is_connected()


@pytest.mark.parametrize("real", [Session, Driver])
def test_fakes_only_offer_real_driver_api(fake_driver, real):
    test_helpers = {"fail_next", "take_failure", "current_session"}
    fake = type(fake_driver.session()) if real is Session else type(fake_driver)
    offered = {name for name in vars(fake) if not name.startswith("_")} - test_helpers

    assert offered <= set(dir(real))


# --- Server version ---


@pytest.mark.parametrize(
    "agent, expected",
    [("Neo4j/4.4.0", "4.4.0"), ("Neo4j/5.13.0-aura", "5.13.0-aura"), ("Memgraph", "Memgraph")],
)
def test_server_version_strips_product_prefix(handler: BoltStateHandler, fake_driver, agent, expected):
    fake_driver.agent = agent
    handler.connect(CONFIG)

    assert handler.get_server_version() == expected
