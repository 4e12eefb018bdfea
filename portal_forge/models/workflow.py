"""GitOps workflow states, collaborator results and the deployment record."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class WorkflowState(str, Enum):
    CREATED = "created"
    REPOSITORY_PROVISIONED = "repository_provisioned"
    COMMIT_APPLIED = "commit_applied"
    PIPELINE_TRIGGERED = "pipeline_triggered"
    PULL_REQUEST_OPENED = "pull_request_opened"
    MERGED = "merged"
    DEPLOYED = "deployed"
    REGISTRY_UPDATED = "registry_updated"   # Terminal success
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"             # Terminal; only from FAILED

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.REGISTRY_UPDATED, WorkflowState.ROLLED_BACK)


class PipelineStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Repository(BaseModel):
    name: str
    url: str
    default_branch: str = "main"


class PullRequest(BaseModel):
    id: str
    repository: str
    commit_id: str
    title: str
    url: str
    state: str = "open"                     # "open" | "closed" | "merged"


class MergeResult(BaseModel):
    pull_request_id: str
    merge_commit_id: str
    merged_at: datetime


class DeploymentResult(BaseModel):
    deployment_id: str
    artifact_name: str
    url: str
    success: bool = True


class TransitionRecord(BaseModel):
    name: str                               # e.g., "create_repository"
    from_state: WorkflowState
    to_state: WorkflowState
    attempts: int
    succeeded: bool
    error: Optional[str] = None
    at: datetime


class CompensationRecord(BaseModel):
    state: WorkflowState                    # State being undone
    action: str                             # e.g., "delete_repository"
    succeeded: bool
    error: Optional[str] = None


class DeploymentRecord(BaseModel):
    """
    Everything the workflow did for one artifact. Built up as the
    workflow advances; consumed by the Template Inspector.
    """

    run_id: str
    artifact_name: str
    capability_id: str
    type: str = ""
    phase: Optional[str] = None
    state: WorkflowState = WorkflowState.CREATED
    repository: Optional[Repository] = None
    commit_id: Optional[str] = None
    pipeline_run_id: Optional[str] = None
    pipeline_status: Optional[PipelineStatus] = None
    pull_request: Optional[PullRequest] = None
    merge: Optional[MergeResult] = None
    deployment: Optional[DeploymentResult] = None
    registry_updated: bool = False
    transitions: List[TransitionRecord] = []
    compensations: List[CompensationRecord] = []
    failed_transition: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False
    started_at: datetime
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == WorkflowState.REGISTRY_UPDATED
