"""
Translation of topology entities into idempotent Cypher mutations.

Nothing here touches the database. Each function returns the ordered list of
mutations that represent one entity; GraphSession applies them.

Graph layout:
    (:Device {id})
    (:Host {id})
    (:Device)-[:LINK {type}]-(:Device)       one per device pair and link type
    (:Host)-[:LINK {type: 'EDGE'}]->(:Device) host attachment
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from .schema import DeviceRef, HostRef, LinkRef


# Relationship type used for the host attachment edge.
HOST_EDGE_TYPE = "EDGE"


class MutationIntent(str, Enum):
    """What a mutation does to the graph."""
    CLEAR_ALL = "clear_all"
    UPSERT_DEVICE = "upsert_device"
    UPSERT_HOST = "upsert_host"
    ATTACH_HOST = "attach_host"
    UPSERT_LINK = "upsert_link"


# Intents whose statement returns an `edges` column; zero means an endpoint
# was missing and nothing was written.
EDGE_INTENTS = frozenset({MutationIntent.ATTACH_HOST, MutationIntent.UPSERT_LINK})


@dataclass(frozen=True)
class Mutation:
    """A parameterized Cypher statement plus the intent it implements."""
    intent: MutationIntent
    statement: str
    params: Dict[str, Any] = field(default_factory=dict)


CLEAR_ALL = "MATCH (n) DETACH DELETE n"

UPSERT_DEVICE = "MERGE (d:Device {id: $id}) RETURN d.id AS id"

UPSERT_HOST = "MERGE (h:Host {id: $id}) RETURN h.id AS id"

UPSERT_HOST_WITH_ATTRIBUTES = """
MERGE (h:Host {id: $id})
SET h.mac = $mac,
    h.vlan = $vlan
RETURN h.id AS id
"""

# MATCH on a missing device yields no rows, so MERGE never runs and
# count() reports 0 instead of creating a placeholder node.
ATTACH_HOST = """
MATCH (h:Host {id: $id})
MATCH (d:Device {id: $location})
MERGE (h)-[r:LINK {type: $type}]->(d)
RETURN count(r) AS edges
"""

# Undirected MERGE: both directions reported for a pair collapse to one edge.
UPSERT_LINK = """
MATCH (a:Device {id: $src})
MATCH (b:Device {id: $dst})
MERGE (a)-[r:LINK {type: $type}]-(b)
RETURN count(r) AS edges
"""

CONSTRAINTS = (
    """
    CREATE CONSTRAINT device_id_unique IF NOT EXISTS
    FOR (d:Device) REQUIRE d.id IS UNIQUE
    """,
    """
    CREATE CONSTRAINT host_id_unique IF NOT EXISTS
    FOR (h:Host) REQUIRE h.id IS UNIQUE
    """,
)


def clear_all() -> List[Mutation]:
    """Delete every node and relationship."""
    return [Mutation(MutationIntent.CLEAR_ALL, CLEAR_ALL)]


def upsert_device(device: DeviceRef) -> List[Mutation]:
    """Create the Device node if absent."""
    return [Mutation(MutationIntent.UPSERT_DEVICE, UPSERT_DEVICE, {"id": device.id})]


def upsert_link(link: LinkRef) -> List[Mutation]:
    """
    Ensure one LINK of the link's type between its two Device nodes.

    If either device node is missing the mutation writes nothing and
    reports zero edges.
    """
    params = {"src": link.src, "dst": link.dst, "type": link.type.value}
    return [Mutation(MutationIntent.UPSERT_LINK, UPSERT_LINK, params)]


def upsert_host(host: HostRef, include_attributes: bool = False) -> List[Mutation]:
    """
    Create the Host node if absent, then attach it to its device.

    The node step always comes first. The attach step writes nothing when the
    device node is missing.

    Args:
        host: Host to mirror
        include_attributes: Also store mac and vlan on the Host node
    """
    if include_attributes:
        node = Mutation(
            MutationIntent.UPSERT_HOST,
            UPSERT_HOST_WITH_ATTRIBUTES,
            {"id": host.id, "mac": host.mac, "vlan": host.vlan},
        )
    else:
        node = Mutation(MutationIntent.UPSERT_HOST, UPSERT_HOST, {"id": host.id})

    edge = Mutation(
        MutationIntent.ATTACH_HOST,
        ATTACH_HOST,
        {"id": host.id, "location": host.location, "type": HOST_EDGE_TYPE},
    )
    return [node, edge]


def schema_constraints() -> List[str]:
    """Uniqueness constraints backing the one-node-per-id rule."""
    return [statement.strip() for statement in CONSTRAINTS]


def is_edge_step(mutation: Mutation) -> bool:
    """True if the mutation reports how many edges it matched or created."""
    return mutation.intent in EDGE_INTENTS
