"""
Template Inspector — post-deployment health and usage of generated templates.

States (per artifact):
  UNKNOWN → (HEALTHY | DEGRADED | FAILED), re-evaluated on every check

Behavioral Contract:
- Read-only towards the registry; consumes DeploymentRecords from the
  GitOps workflow and execution samples from the portal
- A check never raises for an unknown artifact; it reports FAILED
- Status is the worst check: any FAIL → FAILED, any WARN → DEGRADED
- Schedules are cron expressions validated with croniter; a check is due
  once per elapsed cron slot
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from croniter import croniter

from portal_forge.classifier.phases import is_type_supported
from portal_forge.models.capability import Capability
from portal_forge.models.config import InspectorConfig
from portal_forge.models.inspection import (
    CheckStatus,
    ExecutionSample,
    FailureReason,
    HealthCheck,
    HealthCheckResult,
    HealthStatus,
    OverallHealthStatus,
    UsageMetrics,
)
from portal_forge.models.maturity import Phase
from portal_forge.models.workflow import DeploymentRecord, WorkflowState
from portal_forge.registry.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

_CheckFn = Callable[[str, datetime], Optional[HealthCheck]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TemplateInspector:
    """Health checks, usage metrics and check scheduling for deployed templates."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: Optional[InspectorConfig] = None,
    ):
        self.registry = registry
        self.config = config or InspectorConfig()

        self._deployments: Dict[str, DeploymentRecord] = {}
        self._executions: Dict[str, List[ExecutionSample]] = {}
        self._schedules: Dict[str, Tuple[str, datetime]] = {}   # name -> (cron, last slot run)
        self._results: Dict[str, HealthCheckResult] = {}
        self._running = False

        # Check registry, evaluated in order
        self._checks: List[Tuple[str, _CheckFn]] = [
            ("deployment", self._check_deployment),
            ("registry", self._check_registry),
            ("deprecation", self._check_deprecation),
            ("type_support", self._check_type_support),
            ("usage", self._check_usage),
        ]

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    # --- Inputs ---

    def record_deployment(self, record: DeploymentRecord) -> None:
        self._deployments[record.artifact_name] = record

    def record_execution(
        self,
        artifact_name: str,
        success: bool,
        duration_seconds: float,
        user: Optional[str] = None,
        failure_reason: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> ExecutionSample:
        sample = ExecutionSample(
            artifact_name=artifact_name,
            success=success,
            duration_seconds=duration_seconds,
            user=user,
            failure_reason=None if success else (failure_reason or "unknown"),
            at=at or _utcnow(),
        )
        self._executions.setdefault(artifact_name, []).append(sample)
        return sample

    def known_artifacts(self) -> List[str]:
        names: List[str] = []
        for source in (self._deployments, self._executions, self._schedules):
            for name in source:
                if name not in names:
                    names.append(name)
        return names

    def last_result(self, artifact_name: str) -> Optional[HealthCheckResult]:
        return self._results.get(artifact_name)

    # --- Health ---

    def perform_health_check(
        self,
        artifact_name: str,
        current_time: Optional[datetime] = None,
    ) -> HealthCheckResult:
        """Run every check against one artifact and derive its status."""
        now = current_time or _utcnow()
        checks = []
        for _, check in self._checks:
            outcome = check(artifact_name, now)
            if outcome is not None:
                checks.append(outcome)

        if any(c.status == CheckStatus.FAIL for c in checks):
            status = HealthStatus.FAILED
        elif any(c.status == CheckStatus.WARN for c in checks):
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        next_check_at = None
        if artifact_name in self._schedules:
            cron_expr, _ = self._schedules[artifact_name]
            next_check_at = croniter(cron_expr, now).get_next(datetime)

        result = HealthCheckResult(
            artifact_name=artifact_name,
            status=status,
            checks=checks,
            recommendations=self._recommendations(checks),
            checked_at=now,
            next_check_at=next_check_at,
        )
        self._results[artifact_name] = result
        log = logger.info if status == HealthStatus.HEALTHY else logger.warning
        log("Health check %s: %s", artifact_name, status.value)
        return result

    def _find_capability(self, artifact_name: str) -> Optional[Capability]:
        record = self._deployments.get(artifact_name)
        if record is not None:
            capability = self.registry.get_capability(record.capability_id)
            if capability is not None:
                return capability
        for capability in self.registry.get_capabilities():
            if any(ref.artifact_name == artifact_name for ref in capability.templates):
                return capability
        return None

    def _check_deployment(self, artifact_name: str, now: datetime) -> HealthCheck:
        record = self._deployments.get(artifact_name)
        if record is None:
            return HealthCheck(
                name="deployment",
                status=CheckStatus.WARN,
                message="No deployment recorded",
            )
        if record.state == WorkflowState.REGISTRY_UPDATED:
            return HealthCheck(
                name="deployment",
                status=CheckStatus.PASS,
                message=f"Deployed by run {record.run_id}",
            )
        if record.state in (WorkflowState.FAILED, WorkflowState.ROLLED_BACK):
            return HealthCheck(
                name="deployment",
                status=CheckStatus.FAIL,
                message=f"Deployment {record.state.value} at '{record.failed_transition}'",
            )
        return HealthCheck(
            name="deployment",
            status=CheckStatus.WARN,
            message=f"Deployment in progress ({record.state.value})",
        )

    def _check_registry(self, artifact_name: str, now: datetime) -> HealthCheck:
        capability = self._find_capability(artifact_name)
        if capability is None:
            return HealthCheck(
                name="registry",
                status=CheckStatus.FAIL,
                message="Artifact is not referenced by any registered capability",
            )
        return HealthCheck(
            name="registry",
            status=CheckStatus.PASS,
            message=f"Registered under '{capability.id}' at {capability.maturity_level.value}",
        )

    def _check_deprecation(self, artifact_name: str, now: datetime) -> Optional[HealthCheck]:
        capability = self._find_capability(artifact_name)
        if capability is None:
            return None
        if capability.deprecated:
            return HealthCheck(
                name="deprecation",
                status=CheckStatus.WARN,
                message=f"Capability deprecated: {capability.deprecation_reason or 'no reason given'}",
            )
        return HealthCheck(name="deprecation", status=CheckStatus.PASS, message="Not deprecated")

    def _check_type_support(self, artifact_name: str, now: datetime) -> Optional[HealthCheck]:
        record = self._deployments.get(artifact_name)
        if record is None or record.phase is None:
            return None
        if is_type_supported(Phase(record.phase), record.type):
            return HealthCheck(
                name="type_support",
                status=CheckStatus.PASS,
                message=f"Type '{record.type}' is supported in {record.phase}",
            )
        return HealthCheck(
            name="type_support",
            status=CheckStatus.FAIL,
            message=f"Type '{record.type}' is no longer supported in {record.phase}",
        )

    def _check_usage(self, artifact_name: str, now: datetime) -> HealthCheck:
        metrics = self.monitor_usage(artifact_name)
        if metrics.total_executions == 0:
            return HealthCheck(
                name="usage",
                status=CheckStatus.PASS,
                message="No executions recorded yet",
            )
        rate = metrics.success_rate
        message = f"Success rate {rate:.0%} over {metrics.total_executions} execution(s)"
        if rate >= self.config.healthy_success_rate:
            status = CheckStatus.PASS
        elif rate >= self.config.degraded_success_rate:
            status = CheckStatus.WARN
        else:
            status = CheckStatus.FAIL
        return HealthCheck(name="usage", status=status, message=message)

    def _recommendations(self, checks: List[HealthCheck]) -> List[str]:
        advice = {
            "deployment": "Re-run the GitOps workflow for this artifact",
            "registry": "Register the artifact's capability in the registry",
            "deprecation": "Migrate users to the capability's replacement",
            "type_support": "Regenerate the template with a type supported by its phase",
            "usage": "Investigate the most common failure reasons",
        }
        return [advice[c.name] for c in checks if c.status != CheckStatus.PASS and c.name in advice]

    # --- Usage ---

    def monitor_usage(self, artifact_name: str) -> UsageMetrics:
        samples = self._executions.get(artifact_name, [])
        if not samples:
            return UsageMetrics(artifact_name=artifact_name)

        total = len(samples)
        successes = sum(1 for s in samples if s.success)
        reasons = Counter(s.failure_reason for s in samples if not s.success)
        users = Counter(s.user for s in samples if s.user)

        return UsageMetrics(
            artifact_name=artifact_name,
            total_executions=total,
            success_rate=successes / total,
            average_duration_seconds=sum(s.duration_seconds for s in samples) / total,
            failure_reasons=[
                FailureReason(
                    reason=reason,
                    count=count,
                    percentage=round(100.0 * count / total, 1),
                )
                for reason, count in reasons.most_common()
            ],
            last_used=max(s.at for s in samples),
            top_users=[user for user, _ in users.most_common(5)],
        )

    # --- Scheduling ---

    def schedule_health_checks(
        self,
        artifact_name: str,
        cron: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> datetime:
        """Schedule recurring checks; returns the first fire time."""
        expr = cron or self.config.default_schedule
        if not croniter.is_valid(expr):
            raise ValueError(f"Invalid cron expression: '{expr}'")
        now = current_time or _utcnow()
        self._schedules[artifact_name] = (expr, now)
        logger.info("Scheduled health checks for %s (%s)", artifact_name, expr)
        return croniter(expr, now).get_next(datetime)

    def cancel_health_checks(self, artifact_name: str) -> bool:
        return self._schedules.pop(artifact_name, None) is not None

    def due_checks(self, now: Optional[datetime] = None) -> List[str]:
        """Artifacts with a cron slot between their last run and now."""
        now = now or _utcnow()
        due = []
        for name, (expr, last_run) in self._schedules.items():
            latest_slot = croniter(expr, now).get_prev(datetime)
            if latest_slot > last_run:
                due.append(name)
        return due

    def run_due_checks(self, now: Optional[datetime] = None) -> List[HealthCheckResult]:
        now = now or _utcnow()
        results = []
        for name in self.due_checks(now):
            results.append(self.perform_health_check(name, now))
            expr, _ = self._schedules[name]
            self._schedules[name] = (expr, now)
        return results

    def get_overall_health_status(self, current_time: Optional[datetime] = None) -> OverallHealthStatus:
        results = [self.perform_health_check(name, current_time) for name in self.known_artifacts()]
        return OverallHealthStatus(
            total=len(results),
            healthy=sum(1 for r in results if r.status == HealthStatus.HEALTHY),
            degraded=sum(1 for r in results if r.status == HealthStatus.DEGRADED),
            failed=sum(1 for r in results if r.status == HealthStatus.FAILED),
            results=results,
        )

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run scheduled checks on every heartbeat until stopped."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                self.run_due_checks()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.heartbeat_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
