"""
Orchestrator — the single entry point from request text to deployed template.

Pipeline:
  PARSE → COMPLETE → PROMOTE → GENERATE → (PREVIEW) → (DEPLOY) → (ASSESS)

Behavioral Contract:
- Sequential per request; components are injected and shared
- Recovery is local and always flagged: a minimal intent after the parse
  budget is spent ("intent"), a minimal template after a rendering
  failure ("template"); both only when enable_recovery is set
- Workflow failures are never recovered; WorkflowFailedError propagates
  after the failed record has been handed to the inspector
"""

import logging
from typing import List, Optional

from pydantic import BaseModel

from portal_forge.errors import (
    CapabilityConflictError,
    IntentParsingError,
    TemplateRenderingError,
    WorkflowFailedError,
)
from portal_forge.generator.engine import TemplateGenerator
from portal_forge.inspector.inspector import TemplateInspector
from portal_forge.inspector.maturity import assess_maturity
from portal_forge.intent.completion import AnswerProvider, InteractiveCompletion, promote_to_spec
from portal_forge.intent.parser import IntentParser
from portal_forge.models.artifact import GeneratedArtifact, TemplatePreview
from portal_forge.models.config import ForgeConfig
from portal_forge.models.inspection import MaturityAssessment
from portal_forge.models.intent import ClarifyingQuestion, CompletionResult, ParsedIntent
from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import TemplateSpec
from portal_forge.models.workflow import DeploymentRecord, DeploymentResult
from portal_forge.registry.registry import CapabilityRegistry, capability_from_artifact
from portal_forge.workflow.gitops import GitOpsWorkflow, WorkflowRun
from portal_forge.workflow.memory import InMemoryCi, InMemoryPortal, InMemoryVcs

logger = logging.getLogger(__name__)

FALLBACK_CAPABILITY = "basic-service"
FALLBACK_REQUIREMENT = "Create basic service structure"


class GenerationOptions(BaseModel):
    """Per-request switches. None means "use the configured feature flag"."""

    interactive: Optional[bool] = None
    preview: Optional[bool] = None
    deploy: Optional[bool] = None
    maturity_assessment: Optional[bool] = None
    owner: Optional[str] = None


class GenerationResult(BaseModel):
    template: GeneratedArtifact
    spec: TemplateSpec
    preview: Optional[TemplatePreview] = None
    maturity_assessment: Optional[MaturityAssessment] = None
    deployment_record: Optional[DeploymentRecord] = None
    intent: Optional[ParsedIntent] = None
    completion: Optional[CompletionResult] = None
    recommendations: List[str] = []
    fallbacks: List[str] = []               # "intent" and/or "template"

    @property
    def deployment_result(self) -> Optional[DeploymentResult]:
        if self.deployment_record is None:
            return None
        return self.deployment_record.deployment


def minimal_intent() -> ParsedIntent:
    """Single-requirement intent used when parsing cannot succeed."""
    return ParsedIntent(
        capability=FALLBACK_CAPABILITY,
        description=FALLBACK_REQUIREMENT,
        requirements=(FALLBACK_REQUIREMENT,),
        maturity_level=MaturityLevel.L1,
        phase=Phase.FOUNDATION,
    )


class PortalForge:
    """Wires parser, generator, registry, workflow and inspector together."""

    def __init__(
        self,
        config: Optional[ForgeConfig] = None,
        parser: Optional[IntentParser] = None,
        generator: Optional[TemplateGenerator] = None,
        registry: Optional[CapabilityRegistry] = None,
        workflow: Optional[GitOpsWorkflow] = None,
        inspector: Optional[TemplateInspector] = None,
    ):
        self.config = config or ForgeConfig()
        self.parser = parser or IntentParser(self.config.parser)
        self.completion = InteractiveCompletion(
            self.parser, self.config.parser.max_clarification_rounds
        )
        self.generator = generator or TemplateGenerator(
            organization=self.config.organization,
            base_branch=self.config.workflow.base_branch,
        )
        self.registry = registry or CapabilityRegistry()
        self.workflow = workflow or GitOpsWorkflow(
            vcs=InMemoryVcs(host=f"https://github.com/{self.config.organization}"),
            ci=InMemoryCi(),
            portal=InMemoryPortal(),
            registry=self.registry,
            config=self.config.workflow,
        )
        self.inspector = inspector or TemplateInspector(self.registry, self.config.inspector)

    def _resolve(self, options: Optional[GenerationOptions]) -> GenerationOptions:
        options = options or GenerationOptions()
        flags = self.config.features
        return GenerationOptions(
            interactive=(
                flags.enable_interactive_completion
                if options.interactive is None else options.interactive
            ),
            preview=flags.enable_preview if options.preview is None else options.preview,
            deploy=flags.enable_gitops_workflow if options.deploy is None else options.deploy,
            maturity_assessment=(
                flags.enable_maturity_assessment
                if options.maturity_assessment is None else options.maturity_assessment
            ),
            owner=options.owner or self.config.owner,
        )

    # --- Entry points ---

    async def generate_from_intent(
        self,
        text: str,
        options: Optional[GenerationOptions] = None,
        answer_provider: Optional[AnswerProvider] = None,
    ) -> GenerationResult:
        opts = self._resolve(options)
        fallbacks: List[str] = []
        provider = answer_provider if opts.interactive else None

        intent = self._parse_with_reprompt(text, provider)
        if intent is None:
            fallbacks.append("intent")
            intent = minimal_intent()

        completion = self.completion.complete(intent, provider)
        logger.info(
            "Completed intent %s in %d round(s); defaults: %s",
            completion.intent.capability, completion.rounds,
            ", ".join(sorted(completion.defaults_applied)) or "none",
        )

        try:
            spec = promote_to_spec(completion.intent, completion.defaults_applied, opts.owner)
        except IntentParsingError:
            if not self.config.enable_recovery:
                raise
            logger.warning("No template type for %s; using minimal intent", intent.capability)
            fallbacks.append("intent")
            completion = self.completion.complete(minimal_intent(), None)
            spec = promote_to_spec(completion.intent, completion.defaults_applied, opts.owner)

        result = await self._generate(spec, opts, fallbacks)
        return result.model_copy(update={"intent": completion.intent, "completion": completion})

    async def generate_from_spec(
        self,
        spec: TemplateSpec,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        return await self._generate(spec, self._resolve(options), [])

    # --- Stages ---

    def _parse_with_reprompt(
        self,
        text: str,
        answer_provider: Optional[AnswerProvider],
    ) -> Optional[ParsedIntent]:
        """
        Parse, re-prompting through the answer provider on failure.

        Returns None when the budget is spent and recovery is enabled.
        """
        reprompts = self.config.parser.max_parse_attempts if answer_provider else 0
        current = text
        for attempt in range(reprompts + 1):
            try:
                return self.parser.parse_intent(current)
            except IntentParsingError as e:
                logger.warning("Parse attempt %d failed: %s", attempt + 1, e.message)
                if attempt == reprompts:
                    if not self.config.enable_recovery:
                        raise
                    return None
                current = (answer_provider(ClarifyingQuestion(
                    field="capability",
                    question=f"{e.message}. What should be created?",
                    examples=("Create a payments API service",),
                )) or "").strip()
        return None

    async def _generate(
        self,
        spec: TemplateSpec,
        opts: GenerationOptions,
        fallbacks: List[str],
    ) -> GenerationResult:
        try:
            artifact = self.generator.generate_template(spec)
        except TemplateRenderingError as e:
            if not self.config.enable_recovery:
                raise
            logger.warning(
                "Rendering failed for %s (%s); using minimal template",
                spec.metadata.name, e.message,
            )
            fallbacks.append("template")
            artifact = self.generator.generate_minimal_template(spec)

        preview = self.generator.preview_template(artifact) if opts.preview else None

        record = None
        if opts.deploy:
            record = await self._deploy(artifact)

        assessment = None
        if opts.maturity_assessment:
            capability = None
            if record is not None:
                capability = self.registry.get_capability(artifact.metadata.capability_id)
            assessment = assess_maturity(capability or capability_from_artifact(artifact))

        return GenerationResult(
            template=artifact,
            spec=spec,
            preview=preview,
            maturity_assessment=assessment,
            deployment_record=record,
            recommendations=self.generator.get_evolution_recommendations(artifact),
            fallbacks=fallbacks,
        )

    async def _deploy(self, artifact: GeneratedArtifact) -> DeploymentRecord:
        conflicts = self.registry.detect_conflicts(capability_from_artifact(artifact))
        if conflicts:
            raise CapabilityConflictError(
                conflicts, [self.registry.resolve_conflict(c) for c in conflicts]
            )

        run = WorkflowRun(artifact)
        logger.info("Deploying %s (run %s)", artifact.metadata.name, run.record.run_id)
        try:
            record = await self.workflow.run(artifact, run)
        except WorkflowFailedError:
            self.inspector.record_deployment(run.record)
            raise
        self.inspector.record_deployment(record)
        self.inspector.schedule_health_checks(artifact.metadata.name)
        return record
