#!/usr/bin/env python3
"""
Cluster rolling upgrade orchestrator

- status / checks: inspect the cluster before and during the upgrade
- services: prepare nodes and stop non-essential services
- advance: upgrade controllers, then computes (resumable)
- cancel: revert nodes to normal operation

This script supports running directly from a source checkout that uses a
src/ layout. If the package is not installed, it adds the local `src/`
directory to sys.path. For production use, prefer installing the project
and using the `cluster-upgrade` console script.
"""

import os
import sys

REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cluster_upgrade.cli import main

if __name__ == "__main__":
    sys.exit(main())
