"""
Pydantic models for topology snapshots read from the controller.
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkType(str, Enum):
    """Link kinds reported by the controller."""
    DIRECT = "DIRECT"
    INDIRECT = "INDIRECT"
    EDGE = "EDGE"
    TUNNEL = "TUNNEL"
    OPTICAL = "OPTICAL"
    VIRTUAL = "VIRTUAL"


class DeviceRef(BaseModel):
    """
    A device reported by the topology source.

    Only the identifier is mirrored into the graph.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Globally unique device identifier")

    @property
    def entity_id(self) -> str:
        return self.id


class LinkRef(BaseModel):
    """
    A link between two devices.

    Required fields: src, dst
    Optional fields: type (defaults to DIRECT)
    """
    model_config = ConfigDict(frozen=True)

    src: str = Field(..., min_length=1, description="Source device ID")
    dst: str = Field(..., min_length=1, description="Destination device ID")
    type: LinkType = Field(LinkType.DIRECT, description="Link kind")

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        """Accept link kinds in any case."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def entity_id(self) -> str:
        return f"{self.src}->{self.dst}[{self.type.value}]"


class HostRef(BaseModel):
    """
    A host attached to a device.

    Required fields: id, location (the attachment device ID)
    Optional fields: mac, vlan
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique host identifier")
    location: str = Field(..., min_length=1, alias="device_id",
                          description="ID of the device the host attaches to")
    mac: Optional[str] = Field(None, description="Host MAC address")
    vlan: Optional[str] = Field(None, description="Host VLAN")

    @property
    def entity_id(self) -> str:
        return self.id


class Topology(BaseModel):
    """
    One snapshot of the topology: devices, links and hosts.

    Dangling references are allowed here. Links or hosts naming devices that
    are not in the snapshot are reported as skips by the synchronizer.
    """
    devices: List[DeviceRef] = Field(default_factory=list, description="Devices")
    links: List[LinkRef] = Field(default_factory=list, description="Links")
    hosts: List[HostRef] = Field(default_factory=list, description="Hosts")

    def to_dict(self) -> dict:
        """Serialize to the snapshot file format."""
        return self.model_dump(mode="json", by_alias=False)


def load_topology(json_data: dict) -> Topology:
    """
    Load a topology snapshot from JSON data.

    Args:
        json_data: Dictionary with optional "devices", "links" and "hosts" lists

    Returns:
        Topology object

    Raises:
        ValueError: If the data does not match the snapshot schema
    """
    return Topology(**json_data)
