"""
HTTP entry point for the cluster upgrade orchestrator.

This module provides HTTP endpoints for:
- GET /status: Current upgrade progress
- GET /checks: Readiness report and recommended upgrade method
- POST /services: Prepare nodes and stop services before the upgrade
- POST /cancel: Cancel the upgrade and revert nodes
- POST /nodes: Advance (or resume) the node upgrade
- GET /repocheck: Admin node repository check
- GET /noderepocheck: Cluster node repository check
- GET /health: Health check

All configuration is done via CLUSTER_UPGRADE_* environment variables.
"""

import logging
import os
import threading
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import functions_framework
from flask import Request

from cluster_upgrade.config import UpgraderConfig
from cluster_upgrade.errors import UpgradeError
from cluster_upgrade.log_utils import setup_logging
from cluster_upgrade.upgrade_api import OK, SERVICE_UNAVAILABLE, UNPROCESSABLE, UpgradeApi

logger = logging.getLogger(__name__)

HTTP_STATUS = {OK: 200, UNPROCESSABLE: 422, SERVICE_UNAVAILABLE: 503}

_api: Optional[UpgradeApi] = None
_api_lock = threading.Lock()


def get_api() -> UpgradeApi:
    """Return the process-wide API instance, building it on first use."""
    global _api
    with _api_lock:
        if _api is None:
            config = UpgraderConfig.from_env()
            setup_logging(verbose=config.verbose, log_file=None, structured=True)
            _api = UpgradeApi.from_config(config)
        return _api


def set_api(api: Optional[UpgradeApi]) -> None:
    """Install a prebuilt API instance (or reset with None)."""
    global _api
    with _api_lock:
        _api = api


# =============================================================================
# Response Helpers
# =============================================================================


def create_response(
    success: bool,
    data: Optional[Dict] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> Tuple[Dict[str, Any], int]:
    """Create a standardized API response."""
    response = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if data:
        response["data"] = data
    if error:
        response["error"] = error
    if message:
        response["message"] = message

    return response, status_code


def from_result(result: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
    """Turn an UpgradeApi {status, message, ...} result into a response."""
    status = result.get("status", UNPROCESSABLE)
    data = {k: v for k, v in result.items() if k not in ("status", "message")}
    data["status"] = status
    return create_response(
        success=status == OK,
        data=data,
        message=result.get("message") or None,
        status_code=HTTP_STATUS.get(status, 500),
    )


def require_method(method: str) -> Callable:
    """Decorator rejecting requests with the wrong HTTP method."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(request: Request) -> Tuple[Dict[str, Any], int]:
            if request.method != method:
                return create_response(
                    success=False,
                    error="Method Not Allowed",
                    message=f"Use {method} for {request.path}",
                    status_code=405,
                )
            return func(request)

        return wrapper

    return decorator


# =============================================================================
# HTTP Endpoint Handlers
# =============================================================================


@functions_framework.http
def main(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Main entry point.

    Routes requests based on path.
    """
    path = request.path.rstrip("/")

    routes = {
        "": handle_info,
        "/status": handle_status,
        "/checks": handle_checks,
        "/services": handle_services,
        "/cancel": handle_cancel,
        "/nodes": handle_nodes,
        "/repocheck": handle_repocheck,
        "/noderepocheck": handle_node_repocheck,
        "/health": handle_health,
    }

    handler = routes.get(path)
    if not handler:
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown endpoint: {path}",
            status_code=404,
        )

    try:
        return handler(request)
    except UpgradeError as e:
        logger.error(f"Upgrade error: {e}")
        return create_response(
            success=False,
            error="Unprocessable Entity",
            message=str(e),
            status_code=422,
        )
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return create_response(
            success=False,
            error="Validation Error",
            message=str(e),
            status_code=400,
        )
    except Exception as e:
        logger.exception(f"Internal error: {e}")
        return create_response(
            success=False,
            error="Internal Server Error",
            message="An unexpected error occurred. Check the orchestrator logs for details.",
            status_code=500,
        )


def handle_info(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle API info request."""
    return create_response(
        success=True,
        data={
            "service": "Cluster Upgrade Orchestrator",
            "version": os.environ.get("APP_VERSION", "1.0.0"),
            "endpoints": {
                "GET /status": "Current upgrade progress",
                "GET /checks": "Readiness checks and recommended upgrade method",
                "POST /services": "Prepare nodes and stop services",
                "POST /cancel": "Cancel the upgrade",
                "POST /nodes": "Upgrade the next nodes",
                "GET /repocheck": "Check admin node repositories",
                "GET /noderepocheck": "Check cluster node repositories",
                "GET /health": "Health check",
            },
        },
    )


@require_method("GET")
def handle_status(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().status())


@require_method("GET")
def handle_checks(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().checks())


@require_method("POST")
def handle_services(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().services())


@require_method("POST")
def handle_cancel(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().cancel())


@require_method("POST")
def handle_nodes(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().nodes())


@require_method("GET")
def handle_repocheck(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().admin_repo_check())


@require_method("GET")
def handle_node_repocheck(request: Request) -> Tuple[Dict[str, Any], int]:
    return from_result(get_api().node_repo_check())


def handle_health(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle health check request."""
    return create_response(success=True, data={"status": "healthy"})
