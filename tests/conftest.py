from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest

from cypher_shell import config


@pytest.fixture
def clean_shell_home(tmp_path: Path, monkeypatch):
    """
    A project-wide fixture that creates a pristine, isolated shell home for
    each test and redirects the configuration layer to use it.
    """
    temp_shell_home = tmp_path / ".cypher_shell"
    monkeypatch.setattr(config, "SHELL_HOME", temp_shell_home)
    for name in ("NEO4J_ADDRESS", "NEO4J_USERNAME", "NEO4J_PASSWORD", "NEO4J_DATABASE"):
        monkeypatch.delenv(name, raising=False)
    yield temp_shell_home


# --- Driver stand-ins ---
# Just enough of the neo4j driver surface for the state handler: no network.
# Anything public on them that is not a test helper must exist on the real
# neo4j classes too (see test_fakes_only_offer_real_driver_api).


class FakeSummary:
    def __init__(self, database: Optional[str], agent: str):
        self.database = database
        self.server = SimpleNamespace(agent=agent)
        self.counters = SimpleNamespace(nodes_created=0)
        self.result_available_after = 1
        self.result_consumed_after = 2


class FakeResult:
    def __init__(self, summary: FakeSummary, keys=(), records=()):
        self._summary = summary
        self._keys = list(keys)
        self._records = list(records)

    def keys(self):
        return list(self._keys)

    def __iter__(self):
        return iter(self._records)

    def consume(self):
        return self._summary


class FakeTransaction:
    def __init__(self, session: "FakeSession"):
        self.session = session

    def run(self, query, parameters=None):
        return self.session.run(query, parameters)


class FakeSession:
    def __init__(self, driver: "FakeDriver", session_config: Dict[str, Any]):
        self.driver = driver
        self.config = session_config
        self.queries: List[Tuple[str, Any]] = []
        self.write_transactions = 0
        self.closed = False

    def run(self, query, parameters=None):
        self.queries.append((query, parameters))
        self.driver.all_queries.append((query, parameters))
        failure = self.driver.take_failure(query)
        if failure is not None:
            raise failure
        database = self.config.get("database", self.driver.default_database)
        summary = FakeSummary(database, self.driver.agent)
        return FakeResult(summary, keys=["n"], records=[{"n": query}])

    def last_bookmarks(self):
        return f"bookmark:{len(self.driver.all_queries)}"

    def execute_write(self, transaction_function, *args):
        self.write_transactions += 1
        return transaction_function(FakeTransaction(self), *args)

    def close(self):
        self.closed = True
        failure = self.driver.close_session_failure
        if failure is not None:
            raise failure


class FakeDriver:
    def __init__(self):
        self.url: Optional[str] = None
        self.auth = None
        self.options: Dict[str, Any] = {}
        self.sessions: List[FakeSession] = []
        self.all_queries: List[Tuple[str, Any]] = []
        self.default_database = "neo4j"
        self.agent = "Neo4j/5.13.0"
        self.closed = False
        self.times_provided = 0
        self.connectivity_errors: List[Exception] = []
        self.close_session_failure: Optional[Exception] = None
        self._failures: List[Tuple[Optional[str], Exception]] = []

    def fail_next(self, error: Exception, query: Optional[str] = None):
        """Queues a failure for the next run of `query` (or of any query)."""
        self._failures.append((query, error))

    def take_failure(self, query: str) -> Optional[Exception]:
        for index, (expected, error) in enumerate(self._failures):
            if expected is None or expected == query:
                del self._failures[index]
                return error
        return None

    def verify_connectivity(self):
        if self.connectivity_errors:
            raise self.connectivity_errors.pop(0)

    def session(self, **session_config):
        session = FakeSession(self, session_config)
        self.sessions.append(session)
        return session

    def close(self):
        self.closed = True

    @property
    def current_session(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def driver_provider(fake_driver: FakeDriver):
    """A drop-in for `GraphDatabase.driver` that hands out `fake_driver`."""

    def provide(url, auth=None, **options):
        fake_driver.url = url
        fake_driver.auth = auth
        fake_driver.options = options
        fake_driver.times_provided += 1
        fake_driver.closed = False
        return fake_driver

    return provide
