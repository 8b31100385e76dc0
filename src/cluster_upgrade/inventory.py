"""
Node inventory of the cluster being upgraded.

The inventory is a JSON document:

    {
        "admin": "admin",
        "nodes": [
            {"name": "node1", "address": "192.168.124.81",
             "roles": ["controller", "database-server"], "ha_group": "data"},
            {"name": "node3", "address": "192.168.124.83", "roles": ["compute"]}
        ]
    }
"""

import json
import logging
from typing import Dict, List, Optional

from cluster_upgrade.errors import InventoryError
from cluster_upgrade.models import HaGroup, Node

logger = logging.getLogger(__name__)


class NodeInventory:
    """Read-only view of cluster nodes and their HA groups."""

    def __init__(self, nodes: List[Node], admin: Optional[str] = None):
        self._nodes: Dict[str, Node] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise InventoryError(f"Duplicate node name: {node.name}")
            self._nodes[node.name] = node
        if admin is not None and admin not in self._nodes:
            raise InventoryError(f"Admin node {admin} is not in the inventory")
        self.admin = admin

    @classmethod
    def from_dict(cls, data: Dict) -> "NodeInventory":
        try:
            nodes = [
                Node(
                    name=item["name"],
                    address=item.get("address", item["name"]),
                    roles=list(item.get("roles", [])),
                    ha_group=item.get("ha_group"),
                )
                for item in data["nodes"]
            ]
        except (KeyError, TypeError) as e:
            raise InventoryError(f"Malformed inventory entry: {e}")
        return cls(nodes, admin=data.get("admin"))

    @classmethod
    def load(cls, path: str) -> "NodeInventory":
        """Load the inventory from a JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise InventoryError(f"Cannot read inventory {path}: {e}")
        inventory = cls.from_dict(data)
        logger.debug(f"Loaded {len(inventory.nodes())} node(s) from {path}")
        return inventory

    def nodes(self) -> List[Node]:
        return sorted(self._nodes.values(), key=lambda n: n.name)

    def get(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise InventoryError(f"Unknown node: {name}")

    def admin_node(self) -> Node:
        if self.admin is None:
            raise InventoryError("Inventory does not name an admin node")
        return self._nodes[self.admin]

    def cluster_nodes(self) -> List[Node]:
        """All nodes except the admin node."""
        return [n for n in self.nodes() if n.name != self.admin]

    def controllers(self) -> List[Node]:
        return [n for n in self.nodes() if n.is_controller]

    def computes(self) -> List[Node]:
        return [n for n in self.nodes() if n.is_compute and not n.is_controller]

    def standalone_controllers(self) -> List[Node]:
        return [n for n in self.controllers() if not n.is_clustered]

    def ha_groups(self) -> List[HaGroup]:
        """HA groups sorted by name, members sorted by node name."""
        groups: Dict[str, HaGroup] = {}
        for node in self.nodes():
            if node.ha_group is None:
                continue
            groups.setdefault(node.ha_group, HaGroup(name=node.ha_group)).members.append(
                node
            )
        return [groups[name] for name in sorted(groups)]
