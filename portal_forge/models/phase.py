"""Per-phase configuration profile."""

from typing import Tuple

from pydantic import BaseModel, ConfigDict

from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.validation import ValidationRules


class PhaseProfile(BaseModel):
    """Everything the system knows about one development phase."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    maturity: MaturityLevel
    name: str                               # Display name, e.g., "Governance & Compliance"
    description: str
    supported_types: Tuple[str, ...]        # Ordered; first entry is the phase default
    required_capabilities: Tuple[str, ...]
    template_features: Tuple[str, ...] = ()
    validation_rules: ValidationRules       # Cumulative: includes predecessor rules
    supports_composites: bool = False
    dependencies: Tuple[str, ...] = ()      # Phase tooling
    strong_phrases: Tuple[str, ...] = ()    # Any hit decides the phase outright
    keywords: Tuple[str, ...] = ()          # Weighted by hit count
