"""
Tests for GraphSession: connection, error mapping and transient retry.
"""

from unittest.mock import MagicMock, call, patch

import pytest
from neo4j.exceptions import AuthError, CypherSyntaxError, ServiceUnavailable, SessionExpired

from topomirror.schema import DeviceRef, HostRef
from topomirror.session import (
    GraphConnectionError,
    GraphSession,
    RowSet,
    StatementError,
    StoreError,
)
from topomirror.upsert import upsert_device, upsert_host

from conftest import make_result


class TestOpen:
    """Opening verifies connectivity."""

    def test_open_verifies_connectivity(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        graph = GraphSession(graph_config, driver=driver).open()

        driver.verify_connectivity.assert_called_once()
        assert graph.config is graph_config

    def test_creates_driver_from_config(self, graph_config):
        with patch("topomirror.session.GraphDatabase") as database:
            GraphSession(graph_config).open()

        database.driver.assert_called_once_with(
            "bolt://localhost:7687", auth=("neo4j", "secret")
        )

    def test_unreachable_store(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        driver.verify_connectivity.side_effect = ServiceUnavailable("no route")

        with pytest.raises(GraphConnectionError, match="no route"):
            GraphSession(graph_config, driver=driver).open()
        driver.close.assert_called_once()

    def test_bad_credentials(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        driver.verify_connectivity.side_effect = AuthError("unauthorized")

        with pytest.raises(GraphConnectionError, match="authentication"):
            GraphSession(graph_config, driver=driver).open()

    def test_context_manager_closes_driver(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        with GraphSession(graph_config, driver=driver):
            pass

        driver.close.assert_called_once()

    def test_run_requires_open_session(self, graph_config):
        with pytest.raises(GraphConnectionError):
            GraphSession(graph_config).run("RETURN 1")


class TestRun:
    """Auto-commit statements."""

    def test_returns_rows_and_counters(self, graph_config, mock_driver):
        driver, session, _ = mock_driver
        session.run.return_value = make_result([{"id": "of:01"}], nodes_created=1)

        rows = GraphSession(graph_config, driver=driver).run("MERGE (d:Device {id: $id})", {"id": "of:01"})

        assert rows.rows == [{"id": "of:01"}]
        assert rows.nodes_created == 1
        assert rows.value("id") == "of:01"
        driver.session.assert_called_with(database="neo4j")
        session.run.assert_called_once_with("MERGE (d:Device {id: $id})", {"id": "of:01"})

    def test_syntax_error_becomes_statement_error(self, graph_config, mock_driver):
        driver, session, _ = mock_driver
        session.run.side_effect = CypherSyntaxError("Invalid input")

        with pytest.raises(StatementError) as exc_info:
            GraphSession(graph_config, driver=driver).run("MERG (n)", {"id": 1})

        assert exc_info.value.statement == "MERG (n)"
        assert exc_info.value.params == {"id": 1}

    def test_transport_failure_becomes_store_error(self, graph_config, mock_driver):
        driver, session, _ = mock_driver
        session.run.side_effect = ServiceUnavailable("down")

        with pytest.raises(StoreError) as exc_info:
            GraphSession(graph_config, driver=driver).run("RETURN 1")

        assert exc_info.value.transient


class TestApply:
    """One entity's mutations run in one transaction."""

    def test_runs_mutations_in_order(self, graph_config, mock_driver):
        driver, session, tx = mock_driver
        tx.run.side_effect = [
            make_result([{"id": "h1"}], nodes_created=1),
            make_result([{"edges": 1}], relationships_created=1),
        ]
        mutations = upsert_host(HostRef(id="h1", location="of:01"))

        results = GraphSession(graph_config, driver=driver).apply(mutations)

        assert [r.nodes_created for r in results] == [1, 0]
        assert results[1].value("edges") == 1
        assert tx.run.call_args_list == [call(m.statement, m.params) for m in mutations]
        session.begin_transaction.assert_called_once()
        tx.commit.assert_called_once()

    def test_statement_error_names_the_mutation(self, graph_config, mock_driver):
        driver, _, tx = mock_driver
        tx.run.side_effect = CypherSyntaxError("Invalid input")
        mutations = upsert_device(DeviceRef(id="of:01"))

        with pytest.raises(StatementError) as exc_info:
            GraphSession(graph_config, driver=driver).apply(mutations)

        assert exc_info.value.params == {"id": "of:01"}
        tx.commit.assert_not_called()


class TestWriteTransactionRetry:
    """Transient failures are retried with exponential backoff."""

    def test_retries_then_succeeds(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        sleep = MagicMock()
        work = MagicMock(side_effect=[SessionExpired("leader switch"), ServiceUnavailable("x"), "done"])

        result = GraphSession(graph_config, driver=driver, sleep=sleep).write_transaction(work)

        assert result == "done"
        assert work.call_count == 3
        assert sleep.call_args_list == [call(0.5), call(1.0)]

    def test_gives_up_after_max_retries(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        work = MagicMock(side_effect=ServiceUnavailable("down"))

        with pytest.raises(StoreError) as exc_info:
            GraphSession(graph_config, driver=driver, sleep=MagicMock()).write_transaction(work)

        assert work.call_count == 3
        assert exc_info.value.attempts == 3
        assert "gave up after 3" in str(exc_info.value)

    def test_statement_errors_not_retried(self, graph_config, mock_driver):
        driver, _, _ = mock_driver
        work = MagicMock(side_effect=CypherSyntaxError("bad"))

        with pytest.raises(StatementError):
            GraphSession(graph_config, driver=driver, sleep=MagicMock()).write_transaction(work)

        assert work.call_count == 1

    def test_no_retry_policy(self, graph_config, mock_driver):
        from dataclasses import replace

        driver, _, _ = mock_driver
        sleep = MagicMock()
        work = MagicMock(side_effect=ServiceUnavailable("down"))
        config = replace(graph_config, max_retries=0)

        with pytest.raises(StoreError):
            GraphSession(config, driver=driver, sleep=sleep).write_transaction(work)

        assert work.call_count == 1
        sleep.assert_not_called()


def test_rowset_value_default():
    assert RowSet().value("edges", 0) == 0
