"""
Replica role discovery for HA groups.
"""

import logging
from typing import List, Tuple

from cluster_upgrade.clients import RemoteStepClient
from cluster_upgrade.errors import RoleResolutionError
from cluster_upgrade.models import FailureKind, HaGroup, Node

logger = logging.getLogger(__name__)


class ReplicaRoleResolver:
    """Finds which member of an HA group is the replication master."""

    def __init__(self, client: RemoteStepClient, probe_command: str, timeout: int = 60):
        self.client = client
        self.probe_command = probe_command
        self.timeout = timeout

    def resolve(self, group: HaGroup) -> Tuple[Node, Node]:
        """
        Probe every member and return (master, slave).

        A member whose probe exits 0 is master, a non-zero exit means slave,
        and timeouts or connection failures are inconclusive. With several
        slaves the one with the lowest name is returned.

        Raises:
            RoleResolutionError: if there is not exactly one master or no slave
        """
        masters: List[Node] = []
        slaves: List[Node] = []
        inconclusive: List[str] = []

        for member in sorted(group.members, key=lambda n: n.name):
            outcome = self.client.run(member, self.probe_command, self.timeout)
            if outcome.succeeded:
                masters.append(member)
            elif outcome.failure == FailureKind.EXIT:
                slaves.append(member)
            else:
                logger.warning(
                    f"Role probe on {member.name} inconclusive: {outcome.describe()}"
                )
                inconclusive.append(member.name)

        if len(masters) != 1:
            found = ", ".join(m.name for m in masters) or "none"
            raise RoleResolutionError(
                group.name, f"expected one master, found {found}"
            )
        if not slaves:
            reason = "no member reports itself as slave"
            if inconclusive:
                reason += f" (inconclusive: {', '.join(inconclusive)})"
            raise RoleResolutionError(group.name, reason)

        master, slave = masters[0], slaves[0]
        logger.info(f"Group {group.name}: master={master.name}, slave={slave.name}")
        return master, slave
