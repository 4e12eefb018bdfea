"""
GitOps Workflow — takes a generated artifact from repository to registry.

States:
  CREATED → REPOSITORY_PROVISIONED → COMMIT_APPLIED → PIPELINE_TRIGGERED
    → PULL_REQUEST_OPENED → MERGED → DEPLOYED → REGISTRY_UPDATED
  FAILED is reachable from any non-terminal state; ROLLED_BACK only from FAILED.

Behavioral Contract:
- Strictly sequential: a state is entered only after the previous
  transition's external call succeeded
- Each external call is bounded by a timeout; timeouts are transient
- Transient failures are retried per RetryPolicy; non-transient failures
  fail the workflow immediately
- The pipeline timeout covers the whole transition, retries included
- Cancellation is honoured only at state boundaries
- On failure, one compensating call is issued per state already reached,
  in reverse order; compensation is best-effort and never raises
- A registry write that outlives its timeout is awaited, then undone on
  rollback like any other side effect
- Failures always surface as WorkflowFailedError carrying the record
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from portal_forge.errors import (
    ExternalCallError,
    WorkflowFailedError,
    WorkflowStateError,
)
from portal_forge.models.artifact import GeneratedArtifact
from portal_forge.models.config import WorkflowConfig
from portal_forge.models.workflow import (
    CompensationRecord,
    DeploymentRecord,
    PipelineStatus,
    TransitionRecord,
    WorkflowState,
)
from portal_forge.registry.registry import CapabilityRegistry, capability_from_artifact
from portal_forge.workflow.ports import CiProvider, PortalDeployer, VcsProvider

logger = logging.getLogger(__name__)

S = WorkflowState

# (transition name, state entered on success), in order.
TRANSITIONS: Tuple[Tuple[str, WorkflowState], ...] = (
    ("create_repository", S.REPOSITORY_PROVISIONED),
    ("commit", S.COMMIT_APPLIED),
    ("trigger_pipeline", S.PIPELINE_TRIGGERED),
    ("open_pull_request", S.PULL_REQUEST_OPENED),
    ("merge", S.MERGED),
    ("deploy", S.DEPLOYED),
    ("update_registry", S.REGISTRY_UPDATED),
)

_SEQUENCE: List[WorkflowState] = [S.CREATED] + [state for _, state in TRANSITIONS]

# State reached -> compensating action name.
COMPENSATIONS: Dict[WorkflowState, str] = {
    S.REPOSITORY_PROVISIONED: "delete_repository",
    S.COMMIT_APPLIED: "revert_commit",
    S.PIPELINE_TRIGGERED: "cancel_pipeline",
    S.PULL_REQUEST_OPENED: "close_pull_request",
    S.MERGED: "revert_merge",
    S.DEPLOYED: "undeploy",
    S.REGISTRY_UPDATED: "revert_registration",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ExternalCallError) and exc.transient


class WorkflowRun:
    """
    Mutable state of one workflow execution. Owns the DeploymentRecord
    and enforces legal state moves.
    """

    def __init__(self, artifact: GeneratedArtifact, run_id: Optional[str] = None):
        self.record = DeploymentRecord(
            run_id=run_id or f"run_{uuid4().hex[:12]}",
            artifact_name=artifact.metadata.name,
            capability_id=artifact.metadata.capability_id,
            type=artifact.metadata.type,
            phase=artifact.metadata.phase.value,
            started_at=_now(),
        )
        self._cancel_requested = False
        self.reached: List[WorkflowState] = []
        # (entry existed, template reference existed) before the first registry write
        self.registry_baseline: Optional[Tuple[bool, bool]] = None
        # Fixed on the first pipeline attempt; retries poll against the same deadline
        self.pipeline_deadline: Optional[float] = None

    @property
    def state(self) -> WorkflowState:
        return self.record.state

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next state boundary."""
        self._cancel_requested = True

    def advance(self, to_state: WorkflowState) -> None:
        current = self.record.state
        if current.is_terminal:
            raise WorkflowStateError(f"Run {self.record.run_id} is already {current.value}")

        if to_state == S.FAILED:
            if current == S.FAILED:
                raise WorkflowStateError("Run has already failed")
        elif to_state == S.ROLLED_BACK:
            if current != S.FAILED:
                raise WorkflowStateError("ROLLED_BACK is only reachable from FAILED")
        else:
            if current not in _SEQUENCE or current == S.REGISTRY_UPDATED:
                raise WorkflowStateError(f"Cannot leave {current.value} for {to_state.value}")
            expected = _SEQUENCE[_SEQUENCE.index(current) + 1]
            if to_state != expected:
                raise WorkflowStateError(
                    f"Illegal transition {current.value} -> {to_state.value}; "
                    f"expected {expected.value}"
                )
            self.reached.append(to_state)

        self.record.state = to_state
        if to_state.is_terminal:
            self.record.finished_at = _now()


class GitOpsWorkflow:
    """Drives a WorkflowRun through the external collaborators."""

    def __init__(
        self,
        vcs: VcsProvider,
        ci: CiProvider,
        portal: PortalDeployer,
        registry: CapabilityRegistry,
        config: Optional[WorkflowConfig] = None,
    ):
        self.vcs = vcs
        self.ci = ci
        self.portal = portal
        self.registry = registry
        self.config = config or WorkflowConfig()

        self._actions: Dict[str, Callable[[WorkflowRun, GeneratedArtifact], Awaitable[None]]] = {
            "create_repository": self._create_repository,
            "commit": self._commit,
            "trigger_pipeline": self._trigger_pipeline,
            "open_pull_request": self._open_pull_request,
            "merge": self._merge,
            "deploy": self._deploy,
            "update_registry": self._update_registry,
        }
        self._compensators: Dict[str, Callable[[WorkflowRun], Awaitable[None]]] = {
            "delete_repository": self._delete_repository,
            "revert_commit": self._revert_commit,
            "cancel_pipeline": self._cancel_pipeline,
            "close_pull_request": self._close_pull_request,
            "revert_merge": self._revert_merge,
            "undeploy": self._undeploy,
            "revert_registration": self._revert_registration,
        }

    async def run(
        self,
        artifact: GeneratedArtifact,
        run: Optional[WorkflowRun] = None,
    ) -> DeploymentRecord:
        """Execute every transition in order; raise WorkflowFailedError on failure."""
        run = run or WorkflowRun(artifact)
        record = run.record
        logger.info("Workflow %s started for %s", record.run_id, record.artifact_name)

        for name, target in TRANSITIONS:
            if run.cancel_requested:
                record.cancelled = True
                await self._fail(run, name, None)
                raise WorkflowFailedError(name, record, cancelled=True)

            from_state = run.state
            attempts = 0
            started = time.monotonic()
            try:
                async for attempt in self._retrying(name):
                    with attempt:
                        attempts += 1
                        await self._actions[name](run, artifact)
            except Exception as exc:
                record.transitions.append(TransitionRecord(
                    name=name,
                    from_state=from_state,
                    to_state=S.FAILED,
                    attempts=attempts,
                    succeeded=False,
                    error=str(exc),
                    at=_now(),
                ))
                await self._fail(run, name, exc)
                raise WorkflowFailedError(name, record, cause=exc) from exc

            run.advance(target)
            record.transitions.append(TransitionRecord(
                name=name,
                from_state=from_state,
                to_state=target,
                attempts=attempts,
                succeeded=True,
                at=_now(),
            ))
            logger.info(
                "Workflow %s: %s -> %s (%d attempt(s), %.3fs)",
                record.run_id, from_state.value, target.value, attempts,
                time.monotonic() - started,
            )

        return record

    def _retrying(self, name: str) -> AsyncRetrying:
        policy = self.config.retry
        if policy.backoff == "fixed":
            wait = wait_fixed(policy.initial_delay_seconds)
        else:
            wait = wait_exponential(
                multiplier=policy.initial_delay_seconds,
                max=policy.max_delay_seconds,
            )

        def log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Transition %s attempt %d failed (%s); retrying",
                name, state.attempt_number, exc,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(_is_transient),
            before_sleep=log_retry,
            reraise=True,
        )

    async def _call(self, operation: str, coro: Awaitable[Any]) -> Any:
        """One external call, bounded by the configured timeout."""
        try:
            return await asyncio.wait_for(coro, timeout=self.config.call_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ExternalCallError(
                operation,
                f"timed out after {self.config.call_timeout_seconds}s",
                transient=True,
            ) from e

    # --- Failure and compensation ---

    async def _fail(self, run: WorkflowRun, transition: str, exc: Optional[BaseException]) -> None:
        record = run.record
        record.failed_transition = transition
        record.error = "cancelled" if exc is None else str(exc)
        run.advance(S.FAILED)
        logger.warning(
            "Workflow %s failed at %s: %s", record.run_id, transition, record.error,
        )
        if not self.config.enable_rollback:
            record.finished_at = _now()
            return

        to_undo = list(reversed(run.reached))
        if record.registry_updated:
            to_undo.insert(0, S.REGISTRY_UPDATED)
        for state in to_undo:
            action = COMPENSATIONS.get(state)
            if action is None:
                continue
            try:
                await self._call(action, self._compensators[action](run))
                record.compensations.append(
                    CompensationRecord(state=state, action=action, succeeded=True)
                )
            except Exception as comp_exc:
                logger.error(
                    "Compensation %s for %s failed: %s", action, record.run_id, comp_exc,
                )
                record.compensations.append(CompensationRecord(
                    state=state, action=action, succeeded=False, error=str(comp_exc),
                ))
        run.advance(S.ROLLED_BACK)

    # --- Transitions ---

    async def _create_repository(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        run.record.repository = await self._call(
            "create_repository", self.vcs.create_repository(artifact.metadata.name)
        )

    async def _commit(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        files = dict(artifact.skeleton)
        files["template.yaml"] = artifact.config_document
        run.record.commit_id = await self._call("commit", self.vcs.commit(
            run.record.repository,
            files,
            f"Scaffold {artifact.metadata.name} ({artifact.metadata.phase.value})",
        ))

    async def _trigger_pipeline(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        record = run.record
        if run.pipeline_deadline is None:
            run.pipeline_deadline = time.monotonic() + self.config.pipeline_timeout_seconds
        record.pipeline_run_id = await self._call(
            "trigger_pipeline", self.ci.trigger(record.repository, record.commit_id)
        )
        while True:
            status = await self._call("pipeline_status", self.ci.status(record.pipeline_run_id))
            record.pipeline_status = status
            if status == PipelineStatus.PASSED:
                return
            if status in (PipelineStatus.FAILED, PipelineStatus.CANCELLED):
                raise ExternalCallError(
                    "trigger_pipeline", f"pipeline {status.value}", transient=False
                )
            if time.monotonic() >= run.pipeline_deadline:
                await self._call("cancel_pipeline", self.ci.cancel(record.pipeline_run_id))
                raise ExternalCallError(
                    "trigger_pipeline",
                    f"pipeline did not finish within {self.config.pipeline_timeout_seconds}s",
                    transient=False,
                )
            await asyncio.sleep(self.config.pipeline_poll_interval_seconds)

    async def _open_pull_request(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        meta = artifact.metadata
        run.record.pull_request = await self._call("open_pull_request", self.vcs.open_pull_request(
            run.record.repository,
            run.record.commit_id,
            f"Add {meta.title} template",
            f"{meta.description}\n\nPhase: {meta.phase.value} ({meta.maturity_level.value})",
        ))

    async def _merge(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        run.record.merge = await self._call("merge", self.vcs.merge(run.record.pull_request))

    async def _deploy(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        deployment = await self._call("deploy", self.portal.deploy(artifact))
        if not deployment.success:
            raise ExternalCallError("deploy", "portal rejected the template", transient=False)
        run.record.deployment = deployment

    async def _update_registry(self, run: WorkflowRun, artifact: GeneratedArtifact) -> None:
        record = run.record
        capability = capability_from_artifact(
            artifact,
            repository_url=record.repository.url if record.repository else None,
            deployment_id=record.deployment.deployment_id if record.deployment else None,
        )
        if run.registry_baseline is None:
            existing = self.registry.get_capability(capability.id)
            run.registry_baseline = (
                existing is not None,
                existing is not None
                and any(r.artifact_name == record.artifact_name for r in existing.templates),
            )

        write = asyncio.ensure_future(
            asyncio.to_thread(self.registry.register_capability, capability)
        )
        try:
            await self._call("update_registry", asyncio.shield(write))
        except ExternalCallError:
            # The thread cannot be cancelled: let the write land, then fail.
            await write
            record.registry_updated = True
            raise
        record.registry_updated = True

    # --- Compensators ---

    async def _delete_repository(self, run: WorkflowRun) -> None:
        await self.vcs.delete_repository(run.record.repository)

    async def _revert_commit(self, run: WorkflowRun) -> None:
        await self.vcs.revert_commit(run.record.repository, run.record.commit_id)

    async def _cancel_pipeline(self, run: WorkflowRun) -> None:
        await self.ci.cancel(run.record.pipeline_run_id)

    async def _close_pull_request(self, run: WorkflowRun) -> None:
        await self.vcs.close_pull_request(run.record.pull_request)

    async def _revert_merge(self, run: WorkflowRun) -> None:
        await self.vcs.revert_merge(run.record.pull_request, run.record.merge)

    async def _undeploy(self, run: WorkflowRun) -> None:
        await self.portal.undeploy(run.record.deployment)

    async def _revert_registration(self, run: WorkflowRun) -> None:
        record = run.record
        entry_existed, ref_existed = run.registry_baseline or (True, True)
        if not ref_existed:
            await asyncio.to_thread(
                self.registry.revert_registration,
                record.capability_id,
                record.artifact_name,
                not entry_existed,
            )
        record.registry_updated = False
