"""
Topomirror - Mirror network topology into a Neo4j property graph.
"""

__version__ = "0.1.0"

from .config import GraphConfig, GraphConfigError, OnosConfig, is_configured
from .schema import DeviceRef, HostRef, LinkRef, LinkType, Topology, load_topology
from .session import GraphConnectionError, GraphSession, StatementError, StoreError
from .source import OnosRestSource, SnapshotSource, SourceError
from .sync import (
    DanglingReferenceSkip,
    EntityFailure,
    SyncResult,
    SyncState,
    TopologySynchronizer,
)
from .bootstrap import SyncService, run_startup_sync
