"""
Startup wiring: open the graph store and mirror the topology once.
"""

import logging
from typing import Optional

from .config import GraphConfig, get_graph_config
from .session import GraphSession
from .source import TopologySource
from .sync import SyncResult, TopologySynchronizer

logger = logging.getLogger(__name__)


class SyncService:
    """
    Runs one synchronization pass when activated.

    Usage:
        with SyncService(config, source) as service:
            result = service.activate()
    """

    def __init__(self, config: GraphConfig, source: TopologySource,
                 session: Optional[GraphSession] = None):
        self.config = config
        self.source = source
        self._session = session
        self._synchronizer: Optional[TopologySynchronizer] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.deactivate()

    @property
    def synchronizer(self) -> Optional[TopologySynchronizer]:
        return self._synchronizer

    def activate(self) -> SyncResult:
        """
        Connect to the store and run one full pass.

        Raises:
            GraphConnectionError: If the store cannot be reached
        """
        logger.info("Starting topology sync service")
        if self._session is None:
            self._session = GraphSession(self.config)
        self._session.open()

        self._synchronizer = TopologySynchronizer(
            self._session,
            self.source,
            workers=self.config.workers,
            include_host_attributes=self.config.persist_host_attributes,
            ensure_constraints=self.config.ensure_constraints,
        )
        return self._synchronizer.synchronize()

    def deactivate(self) -> None:
        """Stop a running pass at its next phase boundary and close the store."""
        if self._synchronizer is not None:
            self._synchronizer.cancel()
            # The in-flight phase still writes through the session
            self._synchronizer.wait()
        if self._session is not None:
            self._session.close()
        logger.info("Stopped topology sync service")


def run_startup_sync(source: TopologySource, config: Optional[GraphConfig] = None) -> SyncResult:
    """
    Mirror `source` into the graph store once and close the connection.

    Args:
        source: Topology source to read the snapshot from
        config: Graph store settings (read from the environment if omitted)
    """
    with SyncService(config or get_graph_config(), source) as service:
        return service.activate()
