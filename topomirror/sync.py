"""
Full-pass synchronization of a topology snapshot into the graph store.

A pass runs in strict phases: clear the store, upsert devices, then links,
then hosts. Each phase is a barrier: every entity of a phase is attempted
before the next phase starts. Entity failures are recorded and the pass goes
on; a failure while clearing or a lost connection ends the pass.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .schema import DeviceRef, HostRef, LinkRef
from .session import GraphConnectionError, GraphSession, RowSet, StatementError, StoreError
from .upsert import (
    Mutation,
    clear_all,
    is_edge_step,
    schema_constraints,
    upsert_device,
    upsert_host,
    upsert_link,
)

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Synchronizer states."""
    IDLE = "idle"
    CLEARING = "clearing"
    SYNCING_DEVICES = "syncing_devices"
    SYNCING_LINKS = "syncing_links"
    SYNCING_HOSTS = "syncing_hosts"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EntityKind(str, Enum):
    DEVICE = "device"
    LINK = "link"
    HOST = "host"


@dataclass(frozen=True)
class EntityFailure:
    """An entity whose mutations could not be applied."""
    kind: EntityKind
    entity_id: str
    cause: str


@dataclass(frozen=True)
class DanglingReferenceSkip:
    """A link or host edge not written because an endpoint device is missing."""
    kind: EntityKind
    entity_id: str
    missing: tuple


@dataclass
class SyncResult:
    """Outcome of one synchronization pass."""
    state: SyncState = SyncState.IDLE
    devices: int = 0
    links: int = 0
    hosts: int = 0
    nodes_created: int = 0
    nodes_matched: int = 0
    edges_created: int = 0
    edges_matched: int = 0
    nodes_deleted: int = 0
    edges_deleted: int = 0
    failures: List[EntityFailure] = field(default_factory=list)
    skips: List[DanglingReferenceSkip] = field(default_factory=list)
    fatal: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state == SyncState.IDLE and not self.failures and self.fatal is None

    @property
    def failed_ids(self) -> List[str]:
        return [f.entity_id for f in self.failures]

    @property
    def skipped_ids(self) -> List[str]:
        return [s.entity_id for s in self.skips]

    def summary(self) -> str:
        text = (f"{self.state.value}: {self.devices} devices, {self.links} links, "
                f"{self.hosts} hosts; nodes {self.nodes_created} created/"
                f"{self.nodes_matched} matched; edges {self.edges_created} created/"
                f"{self.edges_matched} matched; {len(self.failures)} failed, "
                f"{len(self.skips)} skipped in {self.elapsed_seconds}s")
        if self.fatal:
            text += f" ({self.fatal})"
        return text


@dataclass
class _Attempt:
    """Result of applying one entity, produced on a worker thread."""
    entity_id: str
    mutations: List[Mutation]
    rowsets: List[RowSet] = field(default_factory=list)
    error: Optional[Exception] = None


class _PassAborted(Exception):
    """Ends the current pass; the reason is already recorded in the result."""


class TopologySynchronizer:
    """
    Mirror devices, links and hosts into the graph store.

    Usage:
        with GraphSession(config) as graph:
            result = TopologySynchronizer(graph, source).synchronize()
    """

    def __init__(self, session: GraphSession, source=None, workers: int = 1,
                 include_host_attributes: bool = False, ensure_constraints: bool = True,
                 cancel_event: Optional[threading.Event] = None):
        """
        Args:
            session: Open GraphSession (or anything with run() and apply())
            source: Topology source used by synchronize()
            workers: Parallel upserts within a phase (1 = sequential)
            include_host_attributes: Also store host mac and vlan
            ensure_constraints: Create id uniqueness constraints while clearing
            cancel_event: Event checked at every phase boundary
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._session = session
        self._source = source
        self._workers = workers
        self._include_host_attributes = include_host_attributes
        self._ensure_constraints = ensure_constraints
        self._cancel_event = cancel_event or threading.Event()
        self._state = SyncState.IDLE
        self._pass_lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        return self._state

    def cancel(self) -> None:
        """Stop the running pass at the next phase boundary."""
        self._cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no pass is running.

        Returns:
            False if `timeout` seconds passed with a pass still running
        """
        if not self._pass_lock.acquire(timeout=-1 if timeout is None else timeout):
            return False
        self._pass_lock.release()
        return True

    def synchronize(self) -> SyncResult:
        """
        Read the current snapshot from the source and run one full pass.

        Raises:
            ValueError: If no source was configured
        """
        if self._source is None:
            raise ValueError("No topology source configured")
        devices = list(self._source.list_devices())
        links = list(self._source.list_links())
        hosts = list(self._source.list_hosts())
        return self.sync_all(devices, links, hosts)

    def sync_all(self, devices: Iterable[DeviceRef], links: Iterable[LinkRef],
                 hosts: Iterable[HostRef]) -> SyncResult:
        """
        Replace the graph with the given snapshot.

        Running this twice with the same snapshot leaves the same graph.
        """
        with self._pass_lock:
            self._cancel_event.clear()
            start_time = time.time()
            result = SyncResult()
            try:
                self._run_pass(result, _unique(devices), _unique_links(links), _unique_hosts(hosts))
            except _PassAborted:
                pass
            finally:
                result.elapsed_seconds = round(time.time() - start_time, 3)

            if result.state not in (SyncState.FAILED, SyncState.CANCELLED):
                result.state = SyncState.FAILED if result.failures else SyncState.IDLE
            self._state = result.state

        log = logger.info if result.ok else logger.warning
        log(f"Sync pass finished: {result.summary()}")
        return result

    def _run_pass(self, result: SyncResult, devices: List[DeviceRef],
                  links: List[LinkRef], hosts: List[HostRef]) -> None:
        self._enter(SyncState.CLEARING, result)
        self._clear(result)

        known_devices: Set[str] = set()

        self._enter(SyncState.SYNCING_DEVICES, result)
        result.devices = len(devices)
        for attempt in self._apply_all(devices, upsert_device):
            if self._record(EntityKind.DEVICE, attempt, result, ()):
                known_devices.add(attempt.entity_id)
        logger.info(f"Upserted {len(known_devices)}/{len(devices)} devices")

        self._enter(SyncState.SYNCING_LINKS, result)
        result.links = len(links)
        link_attempts = self._apply_all(links, upsert_link)
        for link, attempt in zip(links, link_attempts):
            missing = tuple(d for d in (link.src, link.dst) if d not in known_devices)
            self._record(EntityKind.LINK, attempt, result, missing)
        logger.info(f"Attempted {len(links)} links")

        self._enter(SyncState.SYNCING_HOSTS, result)
        result.hosts = len(hosts)
        host_attempts = self._apply_all(
            hosts, lambda h: upsert_host(h, self._include_host_attributes)
        )
        for host, attempt in zip(hosts, host_attempts):
            missing = (host.location,) if host.location not in known_devices else ()
            self._record(EntityKind.HOST, attempt, result, missing)
        logger.info(f"Attempted {len(hosts)} hosts")

    def _enter(self, state: SyncState, result: SyncResult) -> None:
        """Move to the next phase, honouring a pending cancellation."""
        if self._cancel_event.is_set():
            logger.warning(f"Sync pass cancelled before {state.value}")
            result.state = SyncState.CANCELLED
            self._state = SyncState.CANCELLED
            raise _PassAborted()
        logger.info(f"Sync phase: {state.value}")
        self._state = state

    def _clear(self, result: SyncResult) -> None:
        try:
            for rows in self._session.apply(clear_all()):
                result.nodes_deleted += rows.nodes_deleted
                result.edges_deleted += rows.relationships_deleted
            if self._ensure_constraints:
                for statement in schema_constraints():
                    self._session.run(statement)
        except (GraphConnectionError, StatementError, StoreError) as e:
            logger.error(f"Clearing the graph failed, pass aborted: {e}")
            self._fail(result, f"clearing failed: {e}")
        logger.info(f"Deleted {result.nodes_deleted} nodes and {result.edges_deleted} relationships")

    def _fail(self, result: SyncResult, reason: str) -> None:
        result.fatal = reason
        result.state = SyncState.FAILED
        self._state = SyncState.FAILED
        raise _PassAborted()

    def _apply_one(self, entity_id: str, mutations: List[Mutation]) -> _Attempt:
        """Apply one entity's mutations; safe to call from worker threads."""
        attempt = _Attempt(entity_id, mutations)
        try:
            attempt.rowsets = self._session.apply(mutations)
        except (StatementError, StoreError, GraphConnectionError) as e:
            attempt.error = e
        return attempt

    def _apply_all(self, entities: Sequence, translate: Callable) -> List[_Attempt]:
        """Apply every entity of a phase; returns once all have been attempted."""
        jobs = [(entity.entity_id, translate(entity)) for entity in entities]
        if self._workers == 1 or len(jobs) < 2:
            return [self._apply_one(entity_id, mutations) for entity_id, mutations in jobs]

        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            futures = [pool.submit(self._apply_one, entity_id, mutations)
                       for entity_id, mutations in jobs]
            return [future.result() for future in futures]

    def _record(self, kind: EntityKind, attempt: _Attempt, result: SyncResult,
                missing: tuple) -> bool:
        """Fold one entity's outcome into the result. Returns True if it was applied."""
        error = attempt.error
        if isinstance(error, GraphConnectionError):
            logger.error(f"Lost connection while syncing {kind.value} {attempt.entity_id}: {error}")
            self._fail(result, f"connection lost: {error}")
        if isinstance(error, StatementError):
            logger.error(f"Statement rejected for {kind.value} {attempt.entity_id}: {error}; "
                         f"mutations: {[(m.intent.value, m.params) for m in attempt.mutations]}")
            result.failures.append(EntityFailure(kind, attempt.entity_id, str(error)))
            return False
        if error is not None:
            logger.error(f"Failed to sync {kind.value} {attempt.entity_id}: {error}")
            result.failures.append(EntityFailure(kind, attempt.entity_id, str(error)))
            return False

        for mutation, rows in zip(attempt.mutations, attempt.rowsets):
            if is_edge_step(mutation):
                edges = rows.value("edges", 0)
                if edges == 0:
                    skipped = missing or _endpoints(mutation)
                    logger.warning(f"Skipped {kind.value} {attempt.entity_id}: "
                                   f"device(s) not in graph: {', '.join(skipped)}")
                    result.skips.append(DanglingReferenceSkip(kind, attempt.entity_id, skipped))
                    continue
                result.edges_created += rows.relationships_created
                result.edges_matched += max(edges - rows.relationships_created, 0)
            else:
                result.nodes_created += rows.nodes_created
                result.nodes_matched += max(1 - rows.nodes_created, 0)

        logger.debug(f"add {kind.value} to database: "
                     f"{[m.params for m in attempt.mutations]}")
        return True


def _endpoints(mutation: Mutation) -> tuple:
    params = mutation.params
    if "location" in params:
        return (params["location"],)
    return tuple(params[key] for key in ("src", "dst") if key in params)


def _unique(entities: Iterable) -> list:
    """Drop exact duplicates, keeping first-seen order."""
    return list(dict.fromkeys(entities))


def _unique_hosts(hosts: Iterable[HostRef]) -> List[HostRef]:
    """Keep the first host reported for each id."""
    unique = {}
    for host in hosts:
        unique.setdefault(host.entity_id, host)
    return list(unique.values())


def _unique_links(links: Iterable[LinkRef]) -> List[LinkRef]:
    """
    Keep one link per unordered device pair and type.

    A LINK edge is undirected, so A->B and B->A map to the same edge.
    """
    seen = set()
    unique = []
    for link in links:
        key = (frozenset((link.src, link.dst)), link.type)
        if key not in seen:
            seen.add(key)
            unique.append(link)
    return unique
