"""Capability registry entries."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from portal_forge.models.maturity import MaturityLevel, Phase


class TemplateRef(BaseModel):
    """Reference from a capability to a deployed artifact."""

    model_config = ConfigDict(frozen=True)

    artifact_name: str
    type: str
    phase: Phase
    maturity_level: MaturityLevel
    capabilities: Tuple[str, ...] = ()
    version: str = "1.0.0"
    repository_url: Optional[str] = None
    deployment_id: Optional[str] = None


class Capability(BaseModel):
    """
    A named platform capability. Its recorded maturity never decreases;
    deprecation is a flag, never a deletion.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    maturity_level: MaturityLevel
    phase: Phase
    templates: Tuple[TemplateRef, ...] = ()
    dependencies: Tuple[str, ...] = ()      # Ids of capabilities this one builds on
    deprecated: bool = False
    deprecation_reason: Optional[str] = None
    migration_path: Optional[str] = None    # Id of the replacement capability
    revision: int = 0                       # Store version at last write

    @property
    def tags(self) -> List[str]:
        """Union of template types and capability tags, order-preserving."""
        seen: List[str] = []
        for ref in self.templates:
            for tag in (ref.type,) + tuple(ref.capabilities):
                if tag not in seen:
                    seen.append(tag)
        return seen


class CapabilityFilter(BaseModel):
    phase: Optional[Phase] = None
    maturity_level: Optional[MaturityLevel] = None
    tag: Optional[str] = None
    search: Optional[str] = None            # Case-insensitive match on id/name/description
    include_deprecated: bool = True


class CapabilityConflict(BaseModel):
    """Two entries share an artifact name but declare different types."""

    artifact_name: str
    capability_id: str
    existing_capability_id: str
    existing_type: str
    incoming_type: str
    phase: Phase


class ConflictResolution(BaseModel):
    strategy: str                           # "compose" | "rename"
    description: str
    suggested_name: Optional[str] = None
    composite_phase: Optional[Phase] = None
    steps: List[str] = []


class StoredValue(BaseModel):
    """A versioned value held by a capability store."""

    key: str
    value: str
    version: int
