"""
Remote step execution on cluster nodes.

Two transports are provided: a REST client for the node agent and an
ssh client. Both return a StepOutcome that separates non-zero exit,
timeout and connection failure.
"""

import logging
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from cluster_upgrade.errors import RemoteStepFailure
from cluster_upgrade.models import FailureKind, Node, StepName, StepOutcome

logger = logging.getLogger(__name__)

SSH_CONNECTION_FAILURE = 255


class RemoteStepClient(ABC):
    """Runs a command on a node, blocking until it finishes or times out."""

    @abstractmethod
    def run(self, node: Node, command: str, timeout: int) -> StepOutcome:
        """
        Execute a command on the given node.

        Args:
            node: Target node
            command: Shell command or script path
            timeout: Maximum runtime in seconds

        Returns:
            StepOutcome describing exit status and output
        """

    def wait_for_script(
        self,
        node: Node,
        script: str,
        timeout: int,
        step: Optional[StepName] = None,
        log_path: Optional[str] = None,
    ) -> StepOutcome:
        """Run a script and raise RemoteStepFailure unless it succeeds."""
        logger.info(f"Running {script} on {node.name} (timeout {timeout}s)")
        outcome = self.run(node, script, timeout)
        if not outcome.succeeded:
            logger.error(f"{script} on {node.name} {outcome.describe()}")
            if outcome.output:
                logger.debug(f"Output from {node.name}:\n{outcome.output}")
            raise RemoteStepFailure(
                node.name, step, outcome, log_path=log_path, action=script
            )
        return outcome


class NodeAgentClient(RemoteStepClient):
    """REST client for the upgrade agent running on each node."""

    RETRYABLE_STATUS_CODES = {429, 503}

    def __init__(
        self,
        port: int = 8443,
        scheme: str = "https",
        max_retries: int = 3,
        base_delay: float = 2.0,
        grace: int = 15,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the node agent client.

        Args:
            port: Agent listening port
            scheme: URL scheme (http or https)
            max_retries: Retries while the agent refuses to accept the command
            base_delay: Base delay for exponential backoff
            grace: Extra seconds added to the HTTP timeout over the command timeout
            session: Optional preconfigured requests session
        """
        self.port = port
        self.scheme = scheme
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.grace = grace
        self.session = session or requests.Session()

    def _url(self, node: Node, path: str) -> str:
        """Construct full agent URL from path."""
        return f"{self.scheme}://{node.address}:{self.port}/{path.lstrip('/')}"

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass
        return min(self.base_delay * (2**attempt), 60.0)

    def run(self, node: Node, command: str, timeout: int) -> StepOutcome:
        url = self._url(node, "/v1/commands")
        body = {"command": command, "timeout": timeout}
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.post(url, json=body, timeout=timeout + self.grace)
            except requests.Timeout as e:
                return StepOutcome(
                    succeeded=False,
                    error=f"no reply within {timeout}s: {e}",
                    failure=FailureKind.TIMEOUT,
                )
            except requests.ConnectionError as e:
                return StepOutcome(
                    succeeded=False, error=str(e), failure=FailureKind.CONNECTION
                )
            except requests.RequestException as e:
                return StepOutcome(
                    succeeded=False,
                    error=f"request to agent failed: {e}",
                    failure=FailureKind.CONNECTION,
                )

            # The agent refused to start the command, so retrying is safe
            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Agent on {node.name} busy ({resp.status_code}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                time.sleep(delay)
                continue

            if resp.status_code == 504:
                return StepOutcome(
                    succeeded=False,
                    error=f"agent reported timeout after {timeout}s",
                    failure=FailureKind.TIMEOUT,
                )
            if resp.status_code != 200:
                return StepOutcome(
                    succeeded=False,
                    error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    failure=FailureKind.CONNECTION,
                )

            try:
                data = resp.json()
                exit_code = int(data["exit_code"])
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error(f"Unexpected reply from agent on {node.name}: {resp.text[:200]}")
                return StepOutcome(
                    succeeded=False,
                    error=f"malformed agent reply: {e}",
                    failure=FailureKind.CONNECTION,
                )
            return StepOutcome(
                succeeded=exit_code == 0,
                exit_code=exit_code,
                output=data.get("output") or "",
                failure=None if exit_code == 0 else FailureKind.EXIT,
            )

        return StepOutcome(
            succeeded=False,
            error=f"agent kept refusing the command: {last_error}",
            failure=FailureKind.CONNECTION,
        )


class SshStepClient(RemoteStepClient):
    """Runs commands over ssh using the system client."""

    def __init__(
        self,
        user: str = "root",
        connect_timeout: int = 10,
        extra_options: Optional[List[str]] = None,
    ):
        self.user = user
        self.connect_timeout = connect_timeout
        self.extra_options = extra_options or []

    def _command_line(self, node: Node, command: str) -> List[str]:
        return [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            *self.extra_options,
            f"{self.user}@{node.address}",
            command,
        ]

    def run(self, node: Node, command: str, timeout: int) -> StepOutcome:
        argv = self._command_line(node, command)
        logger.debug(f"Executing: {' '.join(shlex.quote(a) for a in argv)}")
        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            return StepOutcome(
                succeeded=False,
                output=output,
                error=f"command did not finish within {timeout}s",
                failure=FailureKind.TIMEOUT,
            )
        except OSError as e:
            return StepOutcome(
                succeeded=False, error=str(e), failure=FailureKind.CONNECTION
            )

        output = result.stdout or ""
        if result.returncode == SSH_CONNECTION_FAILURE:
            return StepOutcome(
                succeeded=False,
                exit_code=result.returncode,
                output=output,
                error=output.strip()[-200:] or "ssh connection failed",
                failure=FailureKind.CONNECTION,
            )
        return StepOutcome(
            succeeded=result.returncode == 0,
            exit_code=result.returncode,
            output=output,
            failure=None if result.returncode == 0 else FailureKind.EXIT,
        )


def build_client(config) -> RemoteStepClient:
    """Create the remote step client selected by configuration."""
    if config.transport == "agent":
        return NodeAgentClient(port=config.agent_port, scheme=config.agent_scheme)
    if config.transport == "ssh":
        return SshStepClient(user=config.ssh_user)
    raise ValueError(f"Unknown transport: {config.transport}")
