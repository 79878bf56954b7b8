"""
Shared pytest fixtures.

InMemoryGraph stands in for GraphSession: it interprets each Mutation by its
intent against a tiny in-process graph, with all-or-nothing apply().
"""

import copy
import json
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock
from types import SimpleNamespace

import pytest

from topomirror.config import GraphConfig
from topomirror.schema import DeviceRef, HostRef, LinkRef
from topomirror.session import RowSet
from topomirror.upsert import Mutation, MutationIntent


class InMemoryGraph:
    """Fake graph store keyed by mutation intent."""

    def __init__(self):
        self.devices: List[str] = []
        self.hosts: Dict[str, Dict[str, Any]] = {}
        self.links: List[Tuple[frozenset, str]] = []
        self.host_edges: List[Tuple[str, str]] = []
        self.statements: List[str] = []
        self.applied: List[Mutation] = []
        self.on_apply: Optional[Callable[[Mutation], None]] = None
        self._failures: List[Tuple[MutationIntent, Dict[str, Any], Exception]] = []
        self._lock = threading.Lock()

    def fail_when(self, intent: MutationIntent, error: Exception, **params) -> None:
        """Raise `error` when a mutation with `intent` and matching params is applied."""
        self._failures.append((intent, params, error))

    def add_device(self, device_id: str) -> None:
        self.devices.append(device_id)

    def run(self, statement: str, params=None) -> RowSet:
        self.statements.append(statement)
        return RowSet()

    def apply(self, mutations) -> List[RowSet]:
        with self._lock:
            saved = copy.deepcopy((self.devices, self.hosts, self.links, self.host_edges))
            try:
                results = []
                for mutation in mutations:
                    self._check_failure(mutation)
                    self.applied.append(mutation)
                    if self.on_apply is not None:
                        self.on_apply(mutation)
                    results.append(self._apply(mutation))
                return results
            except Exception:
                self.devices, self.hosts, self.links, self.host_edges = saved
                raise

    def _check_failure(self, mutation: Mutation) -> None:
        for intent, params, error in self._failures:
            if intent == mutation.intent and all(
                mutation.params.get(k) == v for k, v in params.items()
            ):
                raise error

    def _apply(self, mutation: Mutation) -> RowSet:
        params = mutation.params
        intent = mutation.intent

        if intent == MutationIntent.CLEAR_ALL:
            nodes = len(self.devices) + len(self.hosts)
            edges = len(self.links) + len(self.host_edges)
            self.devices, self.hosts, self.links, self.host_edges = [], {}, [], []
            return RowSet(nodes_deleted=nodes, relationships_deleted=edges)

        if intent == MutationIntent.UPSERT_DEVICE:
            if params["id"] in self.devices:
                return RowSet(rows=[{"id": params["id"]}])
            self.devices.append(params["id"])
            return RowSet(rows=[{"id": params["id"]}], nodes_created=1)

        if intent == MutationIntent.UPSERT_HOST:
            created = params["id"] not in self.hosts
            attributes = self.hosts.setdefault(params["id"], {})
            for key in ("mac", "vlan"):
                if key in params:
                    attributes[key] = params[key]
            return RowSet(rows=[{"id": params["id"]}], nodes_created=int(created))

        if intent == MutationIntent.ATTACH_HOST:
            if params["id"] not in self.hosts or params["location"] not in self.devices:
                return RowSet(rows=[{"edges": 0}])
            edge = (params["id"], params["location"])
            if edge in self.host_edges:
                return RowSet(rows=[{"edges": 1}])
            self.host_edges.append(edge)
            return RowSet(rows=[{"edges": 1}], relationships_created=1)

        if intent == MutationIntent.UPSERT_LINK:
            if params["src"] not in self.devices or params["dst"] not in self.devices:
                return RowSet(rows=[{"edges": 0}])
            link = (frozenset((params["src"], params["dst"])), params["type"])
            if link in self.links:
                return RowSet(rows=[{"edges": 1}])
            self.links.append(link)
            return RowSet(rows=[{"edges": 1}], relationships_created=1)

        raise AssertionError(f"Unexpected intent {intent}")

    def links_between(self, a: str, b: str) -> List[str]:
        pair = frozenset((a, b))
        return [link_type for key, link_type in self.links if key == pair]

    def intents(self) -> List[MutationIntent]:
        return [m.intent for m in self.applied]


@pytest.fixture
def graph() -> InMemoryGraph:
    """Empty in-memory graph store."""
    return InMemoryGraph()


@pytest.fixture
def graph_config() -> GraphConfig:
    """Graph config with fast retries."""
    return GraphConfig(
        uri="bolt://localhost:7687",
        user="neo4j",
        password="secret",
        max_retries=2,
        retry_delay=0.5,
    )


@pytest.fixture
def fixtures_dir() -> Path:
    """Returns the path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_snapshot(fixtures_dir) -> Dict[str, Any]:
    """Small three-switch topology with two hosts."""
    return json.loads((fixtures_dir / "topology.json").read_text())


@pytest.fixture
def sample_entities():
    """Devices, links and hosts of a two-switch topology."""
    devices = [DeviceRef(id="of:01"), DeviceRef(id="of:02")]
    links = [
        LinkRef(src="of:01", dst="of:02", type="DIRECT"),
        LinkRef(src="of:02", dst="of:01", type="DIRECT"),
    ]
    hosts = [
        HostRef(id="00:00:00:00:00:01/None", location="of:01"),
        HostRef(id="00:00:00:00:00:02/None", location="of:02"),
    ]
    return devices, links, hosts


def make_result(rows=None, nodes_created=0, nodes_deleted=0,
                relationships_created=0, relationships_deleted=0):
    """Mock neo4j Result with data() rows and summary counters."""
    result = MagicMock()
    result.data.return_value = rows or []
    result.consume.return_value.counters = SimpleNamespace(
        nodes_created=nodes_created,
        nodes_deleted=nodes_deleted,
        relationships_created=relationships_created,
        relationships_deleted=relationships_deleted,
    )
    return result


@pytest.fixture
def mock_driver():
    """
    Mock neo4j driver.

    Returns:
        Tuple of (driver, session, tx) mocks wired through the context managers
    """
    driver = MagicMock()
    session = driver.session.return_value.__enter__.return_value
    tx = session.begin_transaction.return_value.__enter__.return_value
    session.run.return_value = make_result()
    tx.run.return_value = make_result()
    return driver, session, tx
