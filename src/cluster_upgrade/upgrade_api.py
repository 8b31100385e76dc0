"""
Status surface of the upgrade: every operation returns a plain
{status, message, ...} dictionary for the CLI and HTTP front ends.
"""

import json
import logging
import threading
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from cluster_upgrade.checks import build_providers
from cluster_upgrade.clients import RemoteStepClient, build_client
from cluster_upgrade.cluster import PacemakerAdapter
from cluster_upgrade.config import UpgraderConfig
from cluster_upgrade.errors import ProbeError, UpgradeError
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.node_upgrade import NodeUpgradeStep
from cluster_upgrade.progress import JsonProgressStore, UpgradeProgressStore
from cluster_upgrade.readiness import ReadinessChecker
from cluster_upgrade.roles import ReplicaRoleResolver
from cluster_upgrade.sequencer import UpgradeSequencer

logger = logging.getLogger(__name__)

OK = "ok"
UNPROCESSABLE = "unprocessable_entity"
SERVICE_UNAVAILABLE = "service_unavailable"

# (product name, version, label) required in the admin node repositories
TARGET_PRODUCTS = {
    "os": ("SLES", "12.3", "SUSE Linux Enterprise Server 12 SP3"),
    "openstack": ("suse-openstack-cloud", "8", "SUSE OpenStack Cloud 8"),
}


class UpgradeApi:
    """Facade over the orchestrator used by the CLI and HTTP handlers."""

    def __init__(
        self,
        config: UpgraderConfig,
        inventory: NodeInventory,
        client: RemoteStepClient,
        store: UpgradeProgressStore,
    ):
        self.config = config
        self.inventory = inventory
        self.client = client
        self.store = store

        self.adapter = PacemakerAdapter(
            client, inventory, config.commands, command_timeout=config.command_timeout
        )
        self.readiness = ReadinessChecker(
            build_providers(config, client, inventory, self.adapter)
        )
        resolver = ReplicaRoleResolver(
            client, config.commands.role_probe, timeout=config.probe_timeout
        )

        def node_step_factory(checkpoint, cancelled: threading.Event):
            return NodeUpgradeStep(
                client,
                self.adapter,
                resolver,
                inventory,
                config,
                checkpoint,
                cancelled,
            )

        self.sequencer = UpgradeSequencer(
            inventory, store, self.readiness, self.adapter, node_step_factory
        )
        # One orchestration at a time per process
        self._advance_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: UpgraderConfig) -> "UpgradeApi":
        return cls(
            config,
            NodeInventory.load(config.inventory_path),
            build_client(config),
            JsonProgressStore(config.state_path),
        )

    def status(self) -> Dict[str, Any]:
        progress = self.sequencer.status()
        return {"status": OK, "message": progress.last_message, "progress": progress.to_dict()}

    def checks(self) -> Dict[str, Any]:
        report = self.readiness.evaluate()
        return {
            "status": OK,
            "message": "",
            "checks": report.to_dict(),
            "best_method": report.recommended_method.value,
        }

    def services(self) -> Dict[str, Any]:
        try:
            self.sequencer.prepare_services()
        except UpgradeError as e:
            logger.error(str(e))
            return {"status": UNPROCESSABLE, "message": str(e)}
        return {"status": OK, "message": ""}

    def cancel(self) -> Dict[str, Any]:
        failures = self.sequencer.cancel()
        message = "; ".join(str(f) for f in failures)
        return {"status": OK, "message": message}

    def nodes(self) -> Dict[str, Any]:
        """Advance the node upgrade; returns ok once every phase is done."""
        if not self._advance_lock.acquire(blocking=False):
            return {
                "status": UNPROCESSABLE,
                "message": "An upgrade run is already in progress",
            }
        try:
            finished = self.sequencer.advance()
        finally:
            self._advance_lock.release()
        progress = self.store.load()
        return {
            "status": OK if finished else UNPROCESSABLE,
            "message": progress.last_message,
            "progress": progress.to_dict(),
        }

    def admin_repo_check(self) -> Dict[str, Any]:
        """Check that the admin node sees the target product repositories."""
        admin = self.inventory.admin_node()
        outcome = self.client.run(
            admin, self.config.commands.repo_products, self.config.command_timeout
        )
        if not outcome.succeeded:
            return {
                "status": UNPROCESSABLE,
                "message": f"Listing products on {admin.name} {outcome.describe()}",
            }
        return parse_repo_products(outcome.output, self.config.admin_architecture)

    def repo_addons(self) -> List[str]:
        """Products whose repositories the cluster nodes need for the upgrade."""
        addons = ["os", "openstack"]
        if self.config.storage_enabled:
            addons.append("ceph")
        if self.inventory.ha_groups():
            addons.append("ha")
        return addons

    def node_repo_check(self) -> Dict[str, Any]:
        """
        Check the target repositories on the cluster nodes, per addon.

        The check script prints {"arch": ..., "missing": [...]} for one addon
        on one node. Missing repositories are merged per architecture. The
        ha repositories are only checked on clustered nodes.
        """
        result: Dict[str, Any] = {"status": OK, "message": ""}
        for addon in self.repo_addons():
            nodes = self.inventory.cluster_nodes()
            if addon == "ha":
                nodes = [n for n in nodes if n.is_clustered]

            repos: Dict[str, Dict[str, List[str]]] = {}
            for node in nodes:
                try:
                    arch, missing = self._node_repo_report(node, addon)
                except ProbeError as e:
                    logger.error(str(e))
                    return {"status": UNPROCESSABLE, "message": str(e)}
                if not missing:
                    continue
                entry = repos.setdefault(arch, {"missing": [], "nodes": []})
                entry["missing"].extend(r for r in missing if r not in entry["missing"])
                entry["nodes"].append(node.name)

            result[addon] = {"available": not repos, "repos": repos}
        return result

    def _node_repo_report(self, node, addon: str):
        command = self.config.commands.node_repo_check.format(addon=addon)
        outcome = self.client.run(node, command, self.config.probe_timeout)
        if not outcome.succeeded:
            raise ProbeError(
                f"repocheck_{addon}", f"{command} on {node.name} {outcome.describe()}"
            )
        try:
            report = json.loads(outcome.output or "{}")
            arch = report.get("arch") or self.config.admin_architecture
            missing = list(report.get("missing") or [])
        except (ValueError, AttributeError, TypeError) as e:
            raise ProbeError(
                f"repocheck_{addon}", f"unparseable output from {node.name}: {e}"
            )
        return arch, missing


def parse_repo_products(xml_output: str, architecture: str) -> Dict[str, Any]:
    """
    Interpret `zypper --xmlout products` output.

    Returns service_unavailable while zypper is locked or waiting on a
    prompt, otherwise the availability of every target product.
    """
    try:
        stream = ET.fromstring(xml_output)
    except ET.ParseError as e:
        return {"status": UNPROCESSABLE, "message": f"Unparseable zypper output: {e}"}

    for message in stream.iter("message"):
        text = (message.text or "").strip()
        if text.startswith("System management is locked"):
            return {
                "status": SERVICE_UNAVAILABLE,
                "message": f"zypper is locked: {text}",
            }

    prompt = stream.find("prompt")
    if prompt is not None:
        prompt_text = (prompt.findtext("text") or "").strip()
        return {
            "status": SERVICE_UNAVAILABLE,
            "message": f"zypper is waiting for an answer: {prompt_text}",
        }

    products: List[Dict[str, Optional[str]]] = [
        {"name": p.get("name"), "version": p.get("version")}
        for p in stream.iter("product")
    ]
    result: Dict[str, Any] = {"status": OK, "message": ""}
    for key, (name, version, label) in TARGET_PRODUCTS.items():
        available = any(
            p["name"] == name and p["version"] == version for p in products
        )
        entry: Dict[str, Any] = {"available": available, "repos": {}}
        if not available:
            entry["repos"][architecture] = {"missing": [label]}
        result[key] = entry
    return result
