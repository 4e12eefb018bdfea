"""
External collaborator interfaces for the GitOps workflow.

Every call is keyed by deterministic names so that retries are
idempotent: creating an existing repository, re-committing identical
content or re-opening a pull request for the same commit returns the
existing object. Failures are reported as ExternalCallError with the
`transient` flag set when a retry may succeed.
"""

from typing import Dict, Protocol

from portal_forge.models.artifact import GeneratedArtifact
from portal_forge.models.workflow import (
    DeploymentResult,
    MergeResult,
    PipelineStatus,
    PullRequest,
    Repository,
)


class VcsProvider(Protocol):
    async def create_repository(self, name: str) -> Repository: ...

    async def delete_repository(self, repo: Repository) -> None: ...

    async def commit(self, repo: Repository, files: Dict[str, str], message: str) -> str: ...

    async def revert_commit(self, repo: Repository, commit_id: str) -> None: ...

    async def open_pull_request(
        self, repo: Repository, commit_id: str, title: str, body: str
    ) -> PullRequest: ...

    async def close_pull_request(self, pr: PullRequest) -> None: ...

    async def merge(self, pr: PullRequest) -> MergeResult: ...

    async def revert_merge(self, pr: PullRequest, merge: MergeResult) -> None: ...


class CiProvider(Protocol):
    async def trigger(self, repo: Repository, commit_id: str) -> str: ...

    async def status(self, run_id: str) -> PipelineStatus: ...

    async def cancel(self, run_id: str) -> None: ...


class PortalDeployer(Protocol):
    async def deploy(self, artifact: GeneratedArtifact) -> DeploymentResult: ...

    async def undeploy(self, deployment: DeploymentResult) -> None: ...
