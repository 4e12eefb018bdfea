"""Generated artifacts — what the Template Generator emits."""

from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import Step
from portal_forge.models.validation import RuleViolation, ValidationRules


class ArtifactMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str                               # "<phase-slug>-<type>-<spec name>"
    capability_id: str                      # Spec name; the registry key
    title: str
    description: str = ""
    owner: str
    type: str
    maturity_level: MaturityLevel
    phase: Phase
    capabilities: Tuple[str, ...] = ()      # Capability tags the artifact provides
    dependencies: Tuple[str, ...] = ()      # Tooling, e.g., "git", "helm", "opa"
    version: str = "1.0.0"


class Documentation(BaseModel):
    model_config = ConfigDict(frozen=True)

    readme: str
    usage: str


class GeneratedArtifact(BaseModel):
    """
    A rendered template. Deterministic: equal specs yield byte-identical
    artifacts, so no timestamps are embedded.
    """

    model_config = ConfigDict(frozen=True)

    config_document: str                    # Portal template definition (YAML)
    skeleton: Mapping[str, str]             # Path -> content, declaration order; read-only
    documentation: Documentation
    validation: ValidationRules
    metadata: ArtifactMetadata
    steps: Tuple[Step, ...] = ()
    findings: Tuple[RuleViolation, ...] = ()  # Warn-level rule violations
    minimal: bool = False                   # True only for the recovery fallback

    @field_validator("skeleton")
    @classmethod
    def _freeze_skeleton(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("skeleton")
    def _dump_skeleton(self, value: Mapping[str, str]) -> Dict[str, str]:
        return dict(value)

    @property
    def yaml(self) -> str:
        return self.config_document


class CompositeArtifact(BaseModel):
    """Several component templates orchestrated as one."""

    model_config = ConfigDict(frozen=True)

    name: str                               # "<phase-slug>-composite-<name>"
    phase: Phase
    description: str = ""
    components: Tuple[GeneratedArtifact, ...] = ()
    steps: Tuple[Step, ...] = ()
    config_document: str = ""


class ValidationSummary(BaseModel):
    is_valid: bool
    error_count: int = 0
    warning_count: int = 0
    blocking_rules: int = 0
    messages: List[str] = []


class TemplatePreview(BaseModel):
    """Side-effect-free projection of an artifact for display."""

    rendered_yaml: str
    file_tree: List[str] = []
    validation_summary: ValidationSummary
