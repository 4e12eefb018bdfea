"""
In-memory collaborators for the GitOps workflow.

Used by tests and by the default API wiring. They follow the same
idempotency rules as real providers and support fault injection per
operation: transient or permanent errors, and hangs that trip the
workflow's call timeout.
"""

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from portal_forge.errors import ExternalCallError
from portal_forge.models.artifact import GeneratedArtifact
from portal_forge.models.workflow import (
    DeploymentResult,
    MergeResult,
    PipelineStatus,
    PullRequest,
    Repository,
)


class FaultPlan:
    """Queued failures, consumed one per call of the named operation."""

    def __init__(self):
        self._faults: Dict[str, List[Tuple[str, bool]]] = {}
        self.calls: List[str] = []

    def fail(self, operation: str, times: int = 1, transient: bool = True) -> None:
        self._faults.setdefault(operation, []).extend([("error", transient)] * times)

    def hang(self, operation: str, times: int = 1) -> None:
        self._faults.setdefault(operation, []).extend([("hang", True)] * times)

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    async def check(self, operation: str) -> None:
        self.calls.append(operation)
        queue = self._faults.get(operation)
        if not queue:
            return
        kind, transient = queue.pop(0)
        if kind == "hang":
            await asyncio.sleep(3600)
        raise ExternalCallError(operation, "injected failure", transient=transient)


def _digest(*parts: str) -> str:
    return hashlib.sha256("\x00".join(parts).encode()).hexdigest()[:12]


class InMemoryVcs:
    def __init__(self, faults: Optional[FaultPlan] = None, host: str = "https://github.com/platform-templates"):
        self.faults = faults or FaultPlan()
        self.host = host
        self.repositories: Dict[str, Repository] = {}
        self.commits: Dict[str, Dict[str, str]] = {}
        self.pull_requests: Dict[str, PullRequest] = {}
        self.merges: Dict[str, MergeResult] = {}
        self.reverted_commits: List[str] = []
        self.reverted_merges: List[str] = []

    async def create_repository(self, name: str) -> Repository:
        await self.faults.check("create_repository")
        if name not in self.repositories:
            self.repositories[name] = Repository(name=name, url=f"{self.host}/{name}")
        return self.repositories[name]

    async def delete_repository(self, repo: Repository) -> None:
        await self.faults.check("delete_repository")
        self.repositories.pop(repo.name, None)

    async def commit(self, repo: Repository, files: Dict[str, str], message: str) -> str:
        await self.faults.check("commit")
        commit_id = _digest(repo.name, json.dumps(files, sort_keys=True), message)
        self.commits.setdefault(commit_id, dict(files))
        return commit_id

    async def revert_commit(self, repo: Repository, commit_id: str) -> None:
        await self.faults.check("revert_commit")
        self.reverted_commits.append(commit_id)

    async def open_pull_request(
        self, repo: Repository, commit_id: str, title: str, body: str
    ) -> PullRequest:
        await self.faults.check("open_pull_request")
        if commit_id not in self.pull_requests:
            pr_id = f"pr_{_digest(repo.name, commit_id)}"
            self.pull_requests[commit_id] = PullRequest(
                id=pr_id,
                repository=repo.name,
                commit_id=commit_id,
                title=title,
                url=f"{repo.url}/pull/{pr_id}",
            )
        return self.pull_requests[commit_id]

    async def close_pull_request(self, pr: PullRequest) -> None:
        await self.faults.check("close_pull_request")
        stored = self.pull_requests.get(pr.commit_id)
        if stored is not None:
            self.pull_requests[pr.commit_id] = stored.model_copy(update={"state": "closed"})

    async def merge(self, pr: PullRequest) -> MergeResult:
        await self.faults.check("merge")
        if pr.id not in self.merges:
            self.merges[pr.id] = MergeResult(
                pull_request_id=pr.id,
                merge_commit_id=_digest(pr.id, "merge"),
                merged_at=datetime.now(timezone.utc),
            )
            self.pull_requests[pr.commit_id] = pr.model_copy(update={"state": "merged"})
        return self.merges[pr.id]

    async def revert_merge(self, pr: PullRequest, merge: MergeResult) -> None:
        await self.faults.check("revert_merge")
        self.reverted_merges.append(merge.merge_commit_id)


class InMemoryCi:
    """Pipelines pass (or fail) after `polls_until_done` status checks."""

    def __init__(
        self,
        faults: Optional[FaultPlan] = None,
        outcome: PipelineStatus = PipelineStatus.PASSED,
        polls_until_done: int = 1,
    ):
        self.faults = faults or FaultPlan()
        self.outcome = outcome
        self.polls_until_done = polls_until_done
        self.runs: Dict[str, str] = {}          # run id -> commit id
        self._polls: Dict[str, int] = {}
        self.cancelled: List[str] = []

    async def trigger(self, repo: Repository, commit_id: str) -> str:
        await self.faults.check("trigger_pipeline")
        run_id = f"run_{_digest(repo.name, commit_id)}"
        self.runs.setdefault(run_id, commit_id)
        return run_id

    async def status(self, run_id: str) -> PipelineStatus:
        await self.faults.check("pipeline_status")
        if run_id in self.cancelled:
            return PipelineStatus.CANCELLED
        self._polls[run_id] = self._polls.get(run_id, 0) + 1
        if self._polls[run_id] < self.polls_until_done:
            return PipelineStatus.RUNNING
        return self.outcome

    async def cancel(self, run_id: str) -> None:
        await self.faults.check("cancel_pipeline")
        self.cancelled.append(run_id)


class InMemoryPortal:
    def __init__(self, faults: Optional[FaultPlan] = None, base_url: str = "https://portal.example.com"):
        self.faults = faults or FaultPlan()
        self.base_url = base_url
        self.deployments: Dict[str, DeploymentResult] = {}
        self.undeployed: List[str] = []

    async def deploy(self, artifact: GeneratedArtifact) -> DeploymentResult:
        await self.faults.check("deploy")
        name = artifact.metadata.name
        if name not in self.deployments:
            self.deployments[name] = DeploymentResult(
                deployment_id=f"dep_{_digest(name, artifact.config_document)}",
                artifact_name=name,
                url=f"{self.base_url}/create/templates/default/{name}",
            )
        return self.deployments[name]

    async def undeploy(self, deployment: DeploymentResult) -> None:
        await self.faults.check("undeploy")
        self.deployments.pop(deployment.artifact_name, None)
        self.undeployed.append(deployment.deployment_id)
