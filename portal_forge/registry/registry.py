"""
Capability Registry — shared record of what the platform can do and how
mature each capability is.

Behavioral Contract:
- Every write is a compare-and-swap loop over the store; concurrent writers
  never lose updates
- Maturity is monotonic: merges take the maximum level, explicit
  downgrades raise InvalidTransitionError and change nothing
- Template references are appended, never removed, except when a failed
  deployment rolls back its own registration; deprecation is a flag
- Registering an artifact name with a different type than an existing
  entry raises CapabilityConflictError instead of overwriting
"""

import logging
from typing import Callable, List, Optional, Tuple

from portal_forge.classifier.phases import PHASE_TABLE, is_type_supported
from portal_forge.errors import (
    CapabilityConflictError,
    CapabilityNotFoundError,
    ForgeError,
    InvalidTransitionError,
)
from portal_forge.generator.engine import recommend_evolution
from portal_forge.models.artifact import GeneratedArtifact
from portal_forge.models.capability import (
    Capability,
    CapabilityConflict,
    CapabilityFilter,
    ConflictResolution,
    TemplateRef,
)
from portal_forge.models.maturity import MaturityLevel, Phase, max_level
from portal_forge.registry.store import CapabilityStore, InMemoryCapabilityStore

logger = logging.getLogger(__name__)


class RegistryContentionError(ForgeError):
    """CAS kept losing; the store is under pathological contention."""

    code = "registry_contention"


def capability_from_artifact(
    artifact: GeneratedArtifact,
    repository_url: Optional[str] = None,
    deployment_id: Optional[str] = None,
) -> Capability:
    """The registry entry an artifact contributes once deployed."""
    meta = artifact.metadata
    return Capability(
        id=meta.capability_id,
        name=meta.title,
        description=meta.description,
        maturity_level=meta.maturity_level,
        phase=meta.phase,
        templates=(TemplateRef(
            artifact_name=meta.name,
            type=meta.type,
            phase=meta.phase,
            maturity_level=meta.maturity_level,
            capabilities=meta.capabilities,
            version=meta.version,
            repository_url=repository_url,
            deployment_id=deployment_id,
        ),),
    )


def _merge(existing: Capability, incoming: Capability) -> Capability:
    level = max_level(existing.maturity_level, incoming.maturity_level)
    refs = list(existing.templates)
    known = {(r.artifact_name, r.version) for r in refs}
    for ref in incoming.templates:
        if (ref.artifact_name, ref.version) not in known:
            refs.append(ref)
            known.add((ref.artifact_name, ref.version))
    deps = list(existing.dependencies)
    for dep in incoming.dependencies:
        if dep not in deps:
            deps.append(dep)

    return existing.model_copy(update={
        "name": incoming.name or existing.name,
        "description": incoming.description or existing.description,
        "maturity_level": level,
        "phase": level.phase,
        "templates": tuple(refs),
        "dependencies": tuple(deps),
        "deprecated": existing.deprecated or incoming.deprecated,
        "deprecation_reason": existing.deprecation_reason or incoming.deprecation_reason,
        "migration_path": existing.migration_path or incoming.migration_path,
    })


class CapabilityRegistry:
    """Registry over a pluggable CapabilityStore."""

    def __init__(self, store: Optional[CapabilityStore] = None, max_cas_attempts: int = 64):
        self.store = store or InMemoryCapabilityStore()
        self.max_cas_attempts = max_cas_attempts

    # --- Reads ---

    def get_capability(self, capability_id: str) -> Optional[Capability]:
        stored = self.store.get(capability_id)
        if stored is None:
            return None
        return Capability.model_validate_json(stored.value).model_copy(
            update={"revision": stored.version}
        )

    def _require(self, capability_id: str) -> Capability:
        capability = self.get_capability(capability_id)
        if capability is None:
            raise CapabilityNotFoundError(capability_id)
        return capability

    def get_capabilities(self, filter: Optional[CapabilityFilter] = None) -> List[Capability]:
        """All capabilities matching the filter, in insertion order."""
        f = filter or CapabilityFilter()
        results = []
        for key in self.store.keys():
            cap = self.get_capability(key)
            if cap is None:
                continue
            if f.phase is not None and cap.phase != f.phase:
                continue
            if f.maturity_level is not None and cap.maturity_level != f.maturity_level:
                continue
            if f.tag is not None and f.tag not in cap.tags:
                continue
            if not f.include_deprecated and cap.deprecated:
                continue
            if f.search:
                needle = f.search.lower()
                haystack = " ".join([cap.id, cap.name, cap.description]).lower()
                if needle not in haystack:
                    continue
            results.append(cap)
        return results

    # --- Writes ---

    def _cas_update(
        self,
        capability_id: str,
        mutate: Callable[[Optional[Capability]], Optional[Capability]],
    ) -> Optional[Capability]:
        """Read-modify-write until the CAS succeeds. A None result deletes the entry."""
        for attempt in range(1, self.max_cas_attempts + 1):
            stored = self.store.get(capability_id)
            current = (
                Capability.model_validate_json(stored.value) if stored else None
            )
            updated = mutate(current)
            if updated is None:
                if stored is None or self.store.delete(capability_id, stored.version):
                    return None
                logger.debug("CAS conflict deleting %s (attempt %d)", capability_id, attempt)
                continue
            payload = updated.model_copy(update={"revision": 0}).model_dump_json()
            expected = stored.version if stored else None
            if self.store.compare_and_swap(capability_id, expected, payload):
                return updated.model_copy(update={"revision": (expected or 0) + 1})
            logger.debug("CAS conflict on %s (attempt %d)", capability_id, attempt)
        raise RegistryContentionError(
            f"Could not update capability '{capability_id}' after "
            f"{self.max_cas_attempts} attempts",
            capability_id=capability_id,
        )

    def register_capability(self, capability: Capability) -> Capability:
        """Insert, or merge into the existing entry."""
        conflicts = self.detect_conflicts(capability)
        if conflicts:
            resolutions = [self.resolve_conflict(c) for c in conflicts]
            raise CapabilityConflictError(conflicts, resolutions)

        capability = capability.model_copy(update={"phase": capability.maturity_level.phase})

        def mutate(current: Optional[Capability]) -> Capability:
            if current is None:
                return capability
            return _merge(current, capability)

        result = self._cas_update(capability.id, mutate)
        logger.info(
            "Registered capability %s at %s (%d templates)",
            result.id, result.maturity_level.value, len(result.templates),
        )
        return result

    def update_maturity(self, capability_id: str, level: MaturityLevel) -> Capability:
        """Raise the recorded level. Lowering it is refused."""

        def mutate(current: Optional[Capability]) -> Capability:
            if current is None:
                raise CapabilityNotFoundError(capability_id)
            if level.rank < current.maturity_level.rank:
                raise InvalidTransitionError(capability_id, current.maturity_level, level)
            return current.model_copy(update={"maturity_level": level, "phase": level.phase})

        return self._cas_update(capability_id, mutate)

    def deprecate_capability(
        self,
        capability_id: str,
        reason: str,
        migration_path: Optional[str] = None,
    ) -> Capability:
        """Flag a capability as deprecated. Nothing is deleted."""

        def mutate(current: Optional[Capability]) -> Capability:
            if current is None:
                raise CapabilityNotFoundError(capability_id)
            return current.model_copy(update={
                "deprecated": True,
                "deprecation_reason": reason,
                "migration_path": migration_path or current.migration_path,
            })

        result = self._cas_update(capability_id, mutate)
        logger.info("Deprecated capability %s: %s", capability_id, reason)
        return result

    def revert_registration(
        self,
        capability_id: str,
        artifact_name: str,
        remove_entry: bool = False,
    ) -> Optional[Capability]:
        """
        Undo one deployment's registration: drop its template reference, and
        the whole entry if `remove_entry` is set and no references remain.
        The recorded maturity level is left as it is.
        """

        def mutate(current: Optional[Capability]) -> Optional[Capability]:
            if current is None:
                return None
            remaining = tuple(r for r in current.templates if r.artifact_name != artifact_name)
            if remove_entry and not remaining:
                return None
            return current.model_copy(update={"templates": remaining})

        result = self._cas_update(capability_id, mutate)
        logger.info("Reverted registration of %s from %s", artifact_name, capability_id)
        return result

    # --- Guidance ---

    def suggest_improvements(self, capability_id: str) -> List[str]:
        """Evolution steps for the capability's latest template."""
        capability = self._require(capability_id)
        suggestions: List[str] = []

        for conflict in self.detect_conflicts(capability):
            suggestions.append(self.resolve_conflict(conflict).description)
        if capability.deprecated and capability.migration_path:
            suggestions.append(f"Migrate to '{capability.migration_path}'")

        if capability.templates:
            latest = capability.templates[-1]
            suggestions += recommend_evolution(latest.phase, latest.capabilities)
        else:
            suggestions += recommend_evolution(capability.phase, ())
        return suggestions

    def detect_conflicts(self, capability: Capability) -> List[CapabilityConflict]:
        """Entries sharing an artifact name but declaring a different type."""
        conflicts: List[CapabilityConflict] = []
        seen: List[Tuple[str, str, str]] = []
        existing_caps = [c for c in self.get_capabilities() if c.id != capability.id]
        stored_self = self.get_capability(capability.id)
        if stored_self is not None:
            existing_caps.append(stored_self)

        for ref in capability.templates:
            for other in existing_caps:
                for other_ref in other.templates:
                    if other_ref is ref:
                        continue
                    if other_ref.artifact_name != ref.artifact_name or other_ref.type == ref.type:
                        continue
                    key = (ref.artifact_name, other.id, other_ref.type)
                    if key in seen:
                        continue
                    seen.append(key)
                    conflicts.append(CapabilityConflict(
                        artifact_name=ref.artifact_name,
                        capability_id=capability.id,
                        existing_capability_id=other.id,
                        existing_type=other_ref.type,
                        incoming_type=ref.type,
                        phase=ref.phase,
                    ))
        return conflicts

    def resolve_conflict(self, conflict: CapabilityConflict) -> ConflictResolution:
        """Suggest composing both types, or renaming the newcomer."""
        for phase in sorted(Phase, key=lambda p: p.rank):
            profile = PHASE_TABLE[phase]
            if (
                phase.rank >= conflict.phase.rank
                and profile.supports_composites
                and is_type_supported(phase, conflict.existing_type)
                and is_type_supported(phase, conflict.incoming_type)
            ):
                return ConflictResolution(
                    strategy="compose",
                    description=(
                        f"Compose '{conflict.existing_type}' and '{conflict.incoming_type}' "
                        f"into a {phase.value} composite template"
                    ),
                    composite_phase=phase,
                    steps=[
                        "Generate a composite template with both component types",
                        f"Register the composite under '{conflict.capability_id}'",
                    ],
                )

        suggested = f"{conflict.artifact_name}-{conflict.incoming_type}"
        return ConflictResolution(
            strategy="rename",
            description=(
                f"Rename the '{conflict.incoming_type}' artifact to '{suggested}' "
                f"to avoid clashing with the existing '{conflict.existing_type}'"
            ),
            suggested_name=suggested,
            steps=[
                f"Regenerate with name '{suggested}'",
                "Register the renamed artifact",
            ],
        )
