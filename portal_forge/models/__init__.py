"""portal-forge data models."""

from portal_forge.models.artifact import (
    ArtifactMetadata,
    CompositeArtifact,
    Documentation,
    GeneratedArtifact,
    TemplatePreview,
    ValidationSummary,
)
from portal_forge.models.capability import (
    Capability,
    CapabilityConflict,
    CapabilityFilter,
    ConflictResolution,
    StoredValue,
    TemplateRef,
)
from portal_forge.models.config import (
    FeatureFlags,
    ForgeConfig,
    InspectorConfig,
    ParserConfig,
    RetryPolicy,
    WorkflowConfig,
)
from portal_forge.models.inspection import (
    CheckStatus,
    ExecutionSample,
    FailureReason,
    HealthCheck,
    HealthCheckResult,
    HealthStatus,
    MaturityAssessment,
    OverallHealthStatus,
    UsageMetrics,
)
from portal_forge.models.intent import (
    ClarificationTurn,
    ClarifyingQuestion,
    CompletionResult,
    ParsedIntent,
)
from portal_forge.models.maturity import MaturityLevel, Phase, max_level
from portal_forge.models.phase import PhaseProfile
from portal_forge.models.template import (
    ComponentSpec,
    ParameterField,
    SpecMetadata,
    Step,
    TemplateOutput,
    TemplateSpec,
)
from portal_forge.models.validation import (
    Enforcement,
    Rule,
    RuleCategory,
    RuleViolation,
    ValidationIssue,
    ValidationResult,
    ValidationRules,
)
from portal_forge.models.workflow import (
    CompensationRecord,
    DeploymentRecord,
    DeploymentResult,
    MergeResult,
    PipelineStatus,
    PullRequest,
    Repository,
    TransitionRecord,
    WorkflowState,
)

__all__ = [
    "ArtifactMetadata",
    "Capability",
    "CapabilityConflict",
    "CapabilityFilter",
    "CheckStatus",
    "ClarificationTurn",
    "ClarifyingQuestion",
    "CompensationRecord",
    "CompletionResult",
    "ComponentSpec",
    "CompositeArtifact",
    "ConflictResolution",
    "DeploymentRecord",
    "DeploymentResult",
    "Documentation",
    "Enforcement",
    "ExecutionSample",
    "FailureReason",
    "FeatureFlags",
    "ForgeConfig",
    "GeneratedArtifact",
    "HealthCheck",
    "HealthCheckResult",
    "HealthStatus",
    "InspectorConfig",
    "MaturityAssessment",
    "MaturityLevel",
    "MergeResult",
    "OverallHealthStatus",
    "ParameterField",
    "ParsedIntent",
    "ParserConfig",
    "Phase",
    "PhaseProfile",
    "PipelineStatus",
    "PullRequest",
    "Repository",
    "RetryPolicy",
    "Rule",
    "RuleCategory",
    "RuleViolation",
    "SpecMetadata",
    "Step",
    "StoredValue",
    "TemplateOutput",
    "TemplatePreview",
    "TemplateRef",
    "TemplateSpec",
    "TransitionRecord",
    "UsageMetrics",
    "ValidationIssue",
    "ValidationResult",
    "ValidationRules",
    "ValidationSummary",
    "WorkflowConfig",
    "WorkflowState",
    "max_level",
]
