"""Configuration for the parser, workflow, inspector and orchestrator."""

from pydantic import BaseModel, Field


class ParserConfig(BaseModel):
    """Configuration for the Intent Parser and completion loop."""

    min_requirements: int = 2               # Fewer triggers a capability-boundary warning
    max_clarification_rounds: int = 3
    max_parse_attempts: int = 2             # Re-prompts before intent fallback


class RetryPolicy(BaseModel):
    """Retry budget for a single external call."""

    max_attempts: int = Field(ge=1, default=3)
    backoff: str = "exponential"            # "exponential" | "fixed"
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0


class WorkflowConfig(BaseModel):
    """Configuration for the GitOps workflow."""

    retry: RetryPolicy = RetryPolicy()
    call_timeout_seconds: float = 30.0
    pipeline_poll_interval_seconds: float = 2.0
    pipeline_timeout_seconds: float = 600.0
    enable_rollback: bool = True
    base_branch: str = "main"


class InspectorConfig(BaseModel):
    """Configuration for post-deployment inspection."""

    healthy_success_rate: float = 0.95
    degraded_success_rate: float = 0.8
    default_schedule: str = "0 * * * *"     # Cron: hourly
    heartbeat_interval_seconds: int = 60


class FeatureFlags(BaseModel):
    enable_interactive_completion: bool = True
    enable_preview: bool = True
    enable_gitops_workflow: bool = True
    enable_maturity_assessment: bool = True


class ForgeConfig(BaseModel):
    """Top-level configuration passed to the orchestrator."""

    owner: str = "platform-team"
    organization: str = "platform-templates"
    enable_recovery: bool = True            # Minimal-intent / minimal-template fallbacks
    parser: ParserConfig = ParserConfig()
    workflow: WorkflowConfig = WorkflowConfig()
    inspector: InspectorConfig = InspectorConfig()
    features: FeatureFlags = FeatureFlags()
