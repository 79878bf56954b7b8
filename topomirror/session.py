"""
Transactional access to the Neo4j graph store.

Every call acquires its own driver session and releases it on all exit
paths, so one GraphSession can be shared by concurrent workers.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from neo4j import GraphDatabase
from neo4j.exceptions import (
    AuthError,
    ClientError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from .config import GraphConfig
from .upsert import Mutation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth retrying: the store or cluster is momentarily unavailable.
RETRYABLE_ERRORS = (TransientError, ServiceUnavailable, SessionExpired)


class GraphConnectionError(Exception):
    """Raised when a session with the graph store cannot be established."""
    pass


class StatementError(Exception):
    """Raised when the store rejects a statement or its parameters."""
    def __init__(self, message: str, statement: Optional[str] = None,
                 params: Optional[Dict[str, Any]] = None):
        self.statement = statement
        self.params = params
        super().__init__(message)


class StoreError(Exception):
    """Raised on store-side or transport failures."""
    def __init__(self, message: str, transient: bool = False, attempts: int = 1):
        self.transient = transient
        self.attempts = attempts
        super().__init__(message)


@dataclass
class RowSet:
    """Rows returned by one statement plus its write counters."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    nodes_created: int = 0
    nodes_deleted: int = 0
    relationships_created: int = 0
    relationships_deleted: int = 0

    @classmethod
    def from_result(cls, result) -> "RowSet":
        rows = [dict(record) for record in result.data()]
        counters = result.consume().counters
        return cls(
            rows=rows,
            nodes_created=counters.nodes_created,
            nodes_deleted=counters.nodes_deleted,
            relationships_created=counters.relationships_created,
            relationships_deleted=counters.relationships_deleted,
        )

    def value(self, key: str, default: Any = None) -> Any:
        """Return `key` from the first row, or `default` if there are no rows."""
        if not self.rows:
            return default
        return self.rows[0].get(key, default)


@contextmanager
def _driver_errors(statement: Optional[str] = None, params: Optional[Dict[str, Any]] = None):
    """Map neo4j driver exceptions onto the session's error types."""
    try:
        yield
    except AuthError as e:
        raise GraphConnectionError(f"Graph store authentication failed: {e}") from e
    except ClientError as e:
        raise StatementError(f"Statement rejected: {e}", statement, params) from e
    except RETRYABLE_ERRORS as e:
        raise StoreError(f"Transient graph store failure: {e}", transient=True) from e
    except (Neo4jError, DriverError) as e:
        raise StoreError(f"Graph store failure: {e}") from e


class GraphSession:
    """
    Graph store session factory with retrying write transactions.

    Usage:
        with GraphSession(config) as graph:
            graph.apply(upsert_device(device))
    """

    def __init__(self, config: GraphConfig, driver=None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            config: Store URI, credentials and retry policy
            driver: Pre-built neo4j driver (skips driver creation in open())
            sleep: Delay function used between retries
        """
        self._config = config
        self._driver = driver
        self._sleep = sleep

    @property
    def config(self) -> GraphConfig:
        return self._config

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def open(self) -> "GraphSession":
        """
        Create the driver and verify the store is reachable.

        Raises:
            GraphConnectionError: If the store is unreachable or rejects the credentials
        """
        if self._driver is None:
            try:
                self._driver = GraphDatabase.driver(
                    self._config.uri,
                    auth=(self._config.user, self._config.password),
                )
            except (DriverError, ValueError) as e:
                raise GraphConnectionError(f"Cannot create driver for {self._config.uri}: {e}") from e

        try:
            self._driver.verify_connectivity()
        except AuthError as e:
            self.close()
            raise GraphConnectionError(f"Graph store authentication failed: {e}") from e
        except (Neo4jError, DriverError) as e:
            self.close()
            raise GraphConnectionError(f"Cannot connect to graph store at {self._config.uri}: {e}") from e

        logger.info(f"Connected to graph store at {self._config.uri}")
        return self

    def close(self) -> None:
        """Close the driver and its connection pool."""
        if self._driver is not None:
            self._driver.close()
            self._driver = None

    def _require_driver(self):
        if self._driver is None:
            raise GraphConnectionError("Graph session is not open")
        return self._driver

    def run(self, statement: str, params: Optional[Dict[str, Any]] = None) -> RowSet:
        """
        Run one statement in an auto-commit transaction.

        Raises:
            StatementError: If the statement or its parameters are invalid
            StoreError: On store or transport failure
        """
        driver = self._require_driver()
        with _driver_errors(statement, params):
            with driver.session(database=self._config.database) as session:
                return RowSet.from_result(session.run(statement, params or {}))

    def write_transaction(self, work: Callable[[Any], T]) -> T:
        """
        Run `work(tx)` in an explicit write transaction and commit it.

        Transient failures roll the transaction back and retry it with
        exponential backoff, up to `max_retries` extra attempts.

        Raises:
            StatementError: If a statement is rejected (never retried)
            StoreError: On non-transient failure or once retries are exhausted
        """
        driver = self._require_driver()
        attempts = self._config.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                with _driver_errors():
                    with driver.session(database=self._config.database) as session:
                        with session.begin_transaction() as tx:
                            result = work(tx)
                            tx.commit()
                        return result
            except StoreError as e:
                if not e.transient:
                    raise
                if attempt == attempts:
                    raise StoreError(
                        f"{e} (gave up after {attempts} attempt(s))",
                        transient=True,
                        attempts=attempts,
                    ) from e.__cause__
                delay = self._config.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"Retryable error on attempt {attempt}/{attempts}: {e}. "
                               f"Retrying in {delay:.1f}s...")
                self._sleep(delay)

        # max_retries is never negative, so the loop always returns or raises
        raise StoreError("Write transaction was not attempted")

    def apply(self, mutations: Sequence[Mutation]) -> List[RowSet]:
        """
        Apply one entity's mutations, in order, inside a single transaction.

        Either every mutation commits or none does.
        """
        def work(tx) -> List[RowSet]:
            results = []
            for mutation in mutations:
                with _driver_errors(mutation.statement, mutation.params):
                    results.append(RowSet.from_result(tx.run(mutation.statement, mutation.params)))
            return results

        return self.write_transaction(work)
