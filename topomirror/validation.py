"""
Snapshot validation with error and warning reporting.
"""

from collections import Counter
from typing import Dict, List, Tuple
from .schema import Topology


class ValidationError(Exception):
    """Raised when snapshot validation fails with blocking errors."""
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("\n".join(errors))


class ValidationWarning:
    """Represents a non-blocking validation warning."""
    def __init__(self, message: str):
        self.message = message

    def __repr__(self) -> str:
        return f"ValidationWarning: {self.message}"


def validate_topology(topology: Topology) -> Tuple[List[str], List[ValidationWarning]]:
    """
    Validate a topology snapshot and return errors and warnings.

    Dangling links and hosts are only warnings: the synchronizer skips them.

    Args:
        topology: The Topology snapshot to validate

    Returns:
        Tuple of (errors, warnings). Empty list means no issues.

    Raises:
        ValidationError: If blocking validation errors are found
    """
    errors: List[str] = []
    warnings: List[ValidationWarning] = []

    if not topology.devices:
        warnings.append(ValidationWarning("Topology contains no devices"))
    if not topology.links:
        warnings.append(ValidationWarning("Topology contains no links"))

    device_counts = Counter(d.id for d in topology.devices)
    duplicates = sorted(d for d, count in device_counts.items() if count > 1)
    if duplicates:
        warnings.append(
            ValidationWarning(f"Duplicate device IDs (synced once): {', '.join(duplicates)}")
        )

    link_counts = Counter(link.entity_id for link in topology.links)
    duplicate_links = sorted(lid for lid, count in link_counts.items() if count > 1)
    if duplicate_links:
        warnings.append(
            ValidationWarning(f"Duplicate links (synced once): {', '.join(duplicate_links)}")
        )

    self_loops = [link.entity_id for link in topology.links if link.src == link.dst]
    if self_loops:
        warnings.append(
            ValidationWarning(f"Links connecting a device to itself: {', '.join(self_loops)}")
        )

    device_ids = set(device_counts)
    dangling_links = [
        link.entity_id for link in topology.links
        if link.src not in device_ids or link.dst not in device_ids
    ]
    if dangling_links:
        warnings.append(
            ValidationWarning(
                f"Links referencing unknown devices (will be skipped): {', '.join(dangling_links)}"
            )
        )

    # A host reported at two attachment points is contradictory
    attachments: Dict[str, str] = {}
    for host in topology.hosts:
        seen = attachments.setdefault(host.id, host.location)
        if seen != host.location:
            errors.append(
                f"Host '{host.id}' is attached to both '{seen}' and '{host.location}'"
            )

    detached_hosts = sorted({h.id for h in topology.hosts if h.location not in device_ids})
    if detached_hosts:
        warnings.append(
            ValidationWarning(
                f"Hosts attached to unknown devices (edge will be skipped): {', '.join(detached_hosts)}"
            )
        )

    connected = set()
    for link in topology.links:
        connected.add(link.src)
        connected.add(link.dst)
    for host in topology.hosts:
        connected.add(host.location)

    isolated = sorted(d for d in device_ids if d not in connected)
    if isolated:
        warnings.append(
            ValidationWarning(f"Isolated devices detected (no connections): {', '.join(isolated)}")
        )

    if errors:
        raise ValidationError(errors)

    return errors, warnings
