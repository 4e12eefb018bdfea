"""
Interactive completion — asks clarifying questions until an intent is
complete, then promotes it to a TemplateSpec.

States:
  VALIDATE → (ASK → REFINE → VALIDATE)* → (COMPLETE | DEFAULTS_APPLIED)

The loop is bounded by a round budget. When the budget runs out, or no
answer provider is available, the remaining fields are filled from
phase-appropriate defaults and every default used is recorded, so callers
can always tell inferred values from values the user gave.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol

from portal_forge.classifier.phases import resolve_artifact_type
from portal_forge.errors import IntentParsingError
from portal_forge.intent.parser import IntentParser, detect_data_sensitivity, detect_runtime
from portal_forge.models.intent import (
    ClarificationTurn,
    ClarifyingQuestion,
    CompletionResult,
    ParsedIntent,
)
from portal_forge.models.maturity import Phase
from portal_forge.models.template import ParameterField, SpecMetadata, TemplateOutput, TemplateSpec

logger = logging.getLogger(__name__)


class AnswerProvider(Protocol):
    """Supplies a textual answer to a clarifying question."""

    def __call__(self, question: ClarifyingQuestion) -> str: ...


BOUNDARY_DEFAULT = "extracted-requirements-only"

PHASE_DEFAULTS: Mapping[Phase, Mapping[str, str]] = MappingProxyType({
    Phase.FOUNDATION: {"runtime": "nodejs", "data_sensitivity": "internal"},
    Phase.STANDARDIZATION: {"runtime": "nodejs", "data_sensitivity": "internal"},
    Phase.OPERATIONALIZATION: {"runtime": "nodejs", "data_sensitivity": "internal"},
    Phase.GOVERNANCE: {"runtime": "nodejs", "data_sensitivity": "confidential"},
    Phase.INTENT_DRIVEN: {"runtime": "python", "data_sensitivity": "confidential"},
})

if set(PHASE_DEFAULTS) != set(Phase):
    raise RuntimeError("PHASE_DEFAULTS must cover every Phase")

RUNTIME_CHOICES = (
    "nodejs", "typescript", "javascript", "python", "java", "kotlin", "go",
    "rust", "dotnet", "ruby", "react", "vue", "angular",
)
SENSITIVITY_CHOICES = ("public", "internal", "confidential", "regulated")


def _phase_default(phase: Phase, field: str) -> str:
    if field == "capability_boundary":
        return BOUNDARY_DEFAULT
    return PHASE_DEFAULTS[phase][field]


class InteractiveCompletion:
    """Bounded clarification loop over an IntentParser."""

    def __init__(self, parser: Optional[IntentParser] = None, max_rounds: Optional[int] = None):
        self.parser = parser or IntentParser()
        self.max_rounds = (
            max_rounds if max_rounds is not None
            else self.parser.config.max_clarification_rounds
        )

    def complete(
        self,
        intent: ParsedIntent,
        answer_provider: Optional[AnswerProvider] = None,
    ) -> CompletionResult:
        """
        Ask one question per missing field each round until the intent
        validates without warnings or the round budget is spent.
        """
        base = intent
        current = intent
        answers: List[str] = []
        transcript: List[ClarificationTurn] = []
        rounds = 0

        while rounds < self.max_rounds and answer_provider is not None:
            questions = self.parser.generate_clarifying_questions(current)
            if not questions:
                break
            rounds += 1

            for question in questions:
                answer = (answer_provider(question) or "").strip()
                transcript.append(ClarificationTurn(round=rounds, question=question, answer=answer))
                if answer:
                    answers.append(answer)

            if answers:
                current = self.parser.refine_intent(base, " ".join(answers))

        missing = self.parser.validate_intent(current).missing_fields()
        defaults = {field: _phase_default(current.phase, field) for field in missing}
        if defaults:
            logger.warning(
                "Completion for %s applied defaults after %d round(s): %s",
                current.capability, rounds, ", ".join(sorted(defaults)),
            )

        return CompletionResult(
            intent=current,
            rounds=rounds,
            transcript=transcript,
            defaults_applied=defaults,
            complete=not defaults,
        )


def promote_to_spec(
    intent: ParsedIntent,
    defaults_applied: Optional[Dict[str, str]] = None,
    owner: str = "platform-team",
) -> TemplateSpec:
    """Build a TemplateSpec from a (completed) intent."""
    defaults_applied = defaults_applied or {}
    signals = [intent.signal_text, *intent.requirements, *intent.constraints]
    artifact_type = resolve_artifact_type(intent.phase, signals)
    if artifact_type is None:
        raise IntentParsingError(
            f"No template type supported in phase {intent.phase.value} matches "
            f"'{intent.capability}'; describe the capability differently",
            text=intent.description,
        )

    runtime = detect_runtime(intent.signal_text) or defaults_applied.get(
        "runtime", PHASE_DEFAULTS[intent.phase]["runtime"]
    )
    sensitivity = detect_data_sensitivity(intent.signal_text) or defaults_applied.get(
        "data_sensitivity", PHASE_DEFAULTS[intent.phase]["data_sensitivity"]
    )

    parameters: Dict[str, ParameterField] = {
        "name": ParameterField(
            title="Name", description="Unique name of the component",
            default=intent.capability, pattern="^[a-z0-9]+(-[a-z0-9]+)*$", required=True,
        ),
        "description": ParameterField(
            title="Description", description="What this component does",
            default=intent.description,
        ),
        "owner": ParameterField(
            title="Owner", description="Owning team", default=owner,
            required=True, ui_field="OwnerPicker",
        ),
        "repoUrl": ParameterField(
            title="Repository Location", required=True, ui_field="RepoUrlPicker",
        ),
        "runtime": ParameterField(
            title="Runtime", enum=RUNTIME_CHOICES, default=runtime,
        ),
        "data_classification": ParameterField(
            title="Data classification", enum=SENSITIVITY_CHOICES, default=sensitivity,
        ),
    }
    if intent.phase.rank >= Phase.STANDARDIZATION.rank:
        parameters["environment"] = ParameterField(
            title="Target environment", enum=("dev", "staging", "prod"), default="dev",
        )
    if intent.phase.rank >= Phase.OPERATIONALIZATION.rank:
        parameters["enable_monitoring"] = ParameterField(
            type="boolean", title="Enable monitoring", default=True,
        )
        parameters["min_replicas"] = ParameterField(
            type="number", title="Minimum replicas", default=2,
        )
    if intent.phase.rank >= Phase.GOVERNANCE.rank:
        parameters["compliance_frameworks"] = ParameterField(
            type="array", title="Compliance frameworks", default=["sox", "gdpr"],
        )
    if intent.phase == Phase.INTENT_DRIVEN:
        parameters["ai_model"] = ParameterField(
            title="AI model", description="Model endpoint used for intent processing",
            default="managed-llm",
        )

    return TemplateSpec(
        metadata=SpecMetadata(
            name=intent.capability,
            title=intent.capability.replace("-", " ").title(),
            description=intent.description,
            tags=(intent.phase.slug, artifact_type, runtime),
            owner=owner,
        ),
        type=artifact_type,
        phase=intent.phase,
        parameters=parameters,
        output=TemplateOutput(
            links=(
                {"title": "Repository", "url": "${{ steps['publish'].output.remoteUrl }}"},
                {
                    "title": "Open in catalog",
                    "icon": "catalog",
                    "entityRef": "${{ steps['register'].output.entityRef }}",
                },
            ),
        ),
        requirements=intent.requirements,
        constraints=intent.constraints,
    )
