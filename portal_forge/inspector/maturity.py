"""Maturity assessment — how close a capability is to its next phase."""

from typing import List

from portal_forge.classifier.phases import get_next_phase, get_phase_profile
from portal_forge.generator.engine import recommend_evolution
from portal_forge.models.capability import Capability
from portal_forge.models.inspection import MaturityAssessment


def assess_maturity(capability: Capability) -> MaturityAssessment:
    """
    Readiness is the share of the next phase's required capabilities the
    capability's templates already provide, as a percentage.
    """
    have = {tag.lower() for tag in capability.tags}
    recommendations: List[str] = []
    if capability.deprecated:
        target = capability.migration_path or "a supported capability"
        recommendations.append(f"Capability is deprecated; migrate to {target}")

    next_phase = get_next_phase(capability.phase)
    if next_phase is None:
        return MaturityAssessment(
            capability_id=capability.id,
            current_level=capability.maturity_level,
            readiness_score=100.0,
            covered_capabilities=list(get_phase_profile(capability.phase).required_capabilities),
            recommendations=recommendations + recommend_evolution(capability.phase, have),
        )

    required = get_phase_profile(next_phase).required_capabilities
    covered = [cap for cap in required if cap.lower() in have]
    missing = [cap for cap in required if cap.lower() not in have]
    score = round(100.0 * len(covered) / len(required), 1) if required else 100.0

    return MaturityAssessment(
        capability_id=capability.id,
        current_level=capability.maturity_level,
        next_level=next_phase.maturity,
        readiness_score=score,
        covered_capabilities=covered,
        missing_capabilities=missing,
        recommendations=recommendations + recommend_evolution(capability.phase, have),
    )
