"""
Logging utilities for the cluster upgrade orchestrator.
"""

import logging
import sys
from typing import Optional

STRUCTURED_FORMAT = (
    '{"severity": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "timestamp": "%(asctime)s"}'
)


def setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = "cluster-upgrade.log",
    structured: bool = False,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file, None to log to stdout only
        structured: Emit one JSON-like record per line (HTTP entry point)

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=STRUCTURED_FORMAT if structured else "%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    return logging.getLogger("cluster_upgrade")
