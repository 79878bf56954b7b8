"""
Topology sources: where the synchronizer reads devices, links and hosts from.

Any object with list_devices(), list_links() and list_hosts() works. Two are
provided: a static snapshot (optionally loaded from a JSON file) and the
controller's REST API.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import requests
from pydantic import ValidationError as PydanticValidationError

from .config import OnosConfig
from .schema import DeviceRef, HostRef, LinkRef, Topology, load_topology

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when the topology cannot be read from its source."""
    pass


class TopologySource(Protocol):
    def list_devices(self) -> Sequence[DeviceRef]: ...

    def list_links(self) -> Sequence[LinkRef]: ...

    def list_hosts(self) -> Sequence[HostRef]: ...


class SnapshotSource:
    """A fixed topology snapshot."""

    def __init__(self, topology: Topology):
        self.topology = topology

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SnapshotSource":
        """
        Load a snapshot from a JSON file.

        Raises:
            SourceError: If the file is missing, not JSON, or not a valid snapshot
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise SourceError(f"File not found: {path}")

        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SourceError(f"Invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise SourceError(f"Could not read {path}: {e}") from e

        if not isinstance(data, dict):
            raise SourceError(f"Snapshot in {path} must be a JSON object")

        try:
            return cls(load_topology(data))
        except PydanticValidationError as e:
            raise SourceError(f"Invalid snapshot in {path}: {e}") from e

    def list_devices(self) -> List[DeviceRef]:
        return list(self.topology.devices)

    def list_links(self) -> List[LinkRef]:
        return list(self.topology.links)

    def list_hosts(self) -> List[HostRef]:
        return list(self.topology.hosts)


class OnosRestSource:
    """
    Read the live topology from the controller's REST API.

    Endpoints used: /onos/v1/devices, /onos/v1/links, /onos/v1/hosts
    """

    API_PREFIX = "/onos/v1"

    def __init__(self, config: Optional[OnosConfig] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or OnosConfig()
        self._session = session or requests.Session()
        self._session.auth = (self.config.user, self.config.password)
        self._session.headers.update({"Accept": "application/json"})

    def _get(self, resource: str) -> List[Dict[str, Any]]:
        url = f"{self.config.url}{self.API_PREFIX}/{resource}"
        try:
            resp = self._session.get(url, timeout=self.config.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise SourceError(f"Cannot read {resource} from {url}: {e}") from e
        except ValueError as e:
            raise SourceError(f"Invalid JSON from {url}: {e}") from e

        items = payload.get(resource) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SourceError(f"Unexpected response from {url}: missing '{resource}' list")
        logger.debug(f"Read {len(items)} {resource} from {url}")
        return items

    def list_devices(self) -> List[DeviceRef]:
        return [self._parse(DeviceRef, {"id": d.get("id")}) for d in self._get("devices")]

    def list_links(self) -> List[LinkRef]:
        links = []
        for link in self._get("links"):
            links.append(self._parse(LinkRef, {
                "src": (link.get("src") or {}).get("device"),
                "dst": (link.get("dst") or {}).get("device"),
                "type": link.get("type", "DIRECT"),
            }))
        return links

    def list_hosts(self) -> List[HostRef]:
        hosts = []
        for host in self._get("hosts"):
            # Newer controllers report a list of locations, older ones a single one
            locations = host.get("locations") or [host.get("location") or {}]
            hosts.append(self._parse(HostRef, {
                "id": host.get("id"),
                "location": locations[0].get("elementId"),
                "mac": host.get("mac"),
                "vlan": host.get("vlan"),
            }))
        return hosts

    @staticmethod
    def _parse(model, data: Dict[str, Any]):
        try:
            return model(**data)
        except PydanticValidationError as e:
            raise SourceError(f"Unexpected {model.__name__} from controller: {data}: {e}") from e


def dump_topology(source: TopologySource) -> Dict[str, Any]:
    """Capture a source's current topology in the snapshot file format."""
    topology = Topology(
        devices=list(source.list_devices()),
        links=list(source.list_links()),
        hosts=list(source.list_hosts()),
    )
    return topology.to_dict()
