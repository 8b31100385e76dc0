"""
Readiness evaluation: aggregates health checks into a report and an
upgrade method recommendation.
"""

import logging
from typing import Dict, Iterable, List

from cluster_upgrade.checks import HealthCheckProvider
from cluster_upgrade.models import CheckResult, Detail, ReadinessReport, UpgradeMethod

logger = logging.getLogger(__name__)


def recommended_method(checks: Iterable[CheckResult]) -> UpgradeMethod:
    """
    Derive the upgrade method from check results.

    none if a required check failed, non-disruptive if everything passed,
    disruptive otherwise.
    """
    checks = list(checks)
    if any(c.required and not c.passed for c in checks):
        return UpgradeMethod.NONE
    if all(c.passed for c in checks):
        return UpgradeMethod.NON_DISRUPTIVE
    return UpgradeMethod.DISRUPTIVE


class ReadinessChecker:
    """Runs all registered health checks once per evaluation."""

    def __init__(self, providers: List[HealthCheckProvider]):
        self.providers = providers

    def _run_provider(self, provider: HealthCheckProvider) -> CheckResult:
        try:
            errors = provider.check()
        except Exception as e:
            # A broken probe must not hide the status of the others
            logger.error(f"Check {provider.check_id} could not run: {e}")
            errors = [
                Detail(
                    code="probe_error",
                    data=str(e),
                    help=f"The {provider.check_id} check could not be executed; see the orchestrator log.",
                )
            ]
        result = CheckResult(
            id=provider.check_id,
            required=provider.required,
            passed=not errors,
            errors=list(errors),
        )
        status = "passed" if result.passed else "FAILED"
        logger.info(
            f"  Check {result.id}: {status} ({'required' if result.required else 'optional'})"
        )
        return result

    def evaluate(self) -> ReadinessReport:
        """Probe the cluster and return a fresh readiness report."""
        results: Dict[str, CheckResult] = {}
        for provider in self.providers:
            results[provider.check_id] = self._run_provider(provider)
        method = recommended_method(results.values())
        logger.info(f"Recommended upgrade method: {method.value}")
        return ReadinessReport(checks=results, recommended_method=method)

    def failed_required(self, report: ReadinessReport) -> List[str]:
        return [c.id for c in report.checks.values() if c.required and not c.passed]
