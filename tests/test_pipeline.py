"""End-to-end tests for the orchestrator."""

import pytest
from jinja2 import DictLoader

from portal_forge.errors import (
    CapabilityConflictError,
    IntentParsingError,
    UnsupportedTypeError,
    WorkflowFailedError,
)
from portal_forge.generator.engine import TOP_PHASE_MESSAGE, TemplateGenerator
from portal_forge.generator.skeleton import SkeletonRenderer
from portal_forge.models.capability import Capability, TemplateRef
from portal_forge.models.config import FeatureFlags, ForgeConfig
from portal_forge.models.inspection import HealthStatus
from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import SpecMetadata, TemplateSpec
from portal_forge.models.workflow import WorkflowState
from portal_forge.orchestrator.pipeline import (
    FALLBACK_CAPABILITY,
    GenerationOptions,
    PortalForge,
)
from portal_forge.registry.registry import CapabilityRegistry
from portal_forge.workflow.gitops import GitOpsWorkflow
from portal_forge.workflow.memory import FaultPlan, InMemoryCi, InMemoryPortal, InMemoryVcs

NODE_API_TEXT = (
    "Create a Node.js REST API service with authentication, "
    "database integration, and monitoring"
)
GOVERNANCE_TEXT = (
    "Create a governance-compliant service template with security policies, "
    "compliance validation, and audit trails"
)


def _make_provider(answers: dict):
    def provider(question):
        return answers.get(question.field, "")
    return provider


class TestGenerateFromIntent:
    @pytest.fixture(autouse=True)
    def _setup(self, fast_workflow_config):
        self.config = ForgeConfig(workflow=fast_workflow_config)
        self.forge = PortalForge(self.config)

    @pytest.mark.asyncio
    async def test_node_api_is_deployed(self):
        result = await self.forge.generate_from_intent(NODE_API_TEXT, GenerationOptions(deploy=True))
        template = result.template
        assert template.metadata.phase == Phase.FOUNDATION
        assert template.metadata.name == "foundation-backend-service-node-js-rest-api-service"
        assert "fetch:template" in template.yaml
        assert "publish:github" in template.yaml
        assert "catalog:register" in template.yaml

        deployment = result.deployment_record
        assert deployment.state == WorkflowState.REGISTRY_UPDATED
        assert deployment.repository is not None
        assert deployment.pull_request is not None
        assert deployment.merge is not None
        assert result.deployment_result is not None
        assert result.deployment_result.success
        assert result.fallbacks == []

        capability = self.forge.registry.get_capability("node-js-rest-api-service")
        assert capability.maturity_level == MaturityLevel.L1
        assert result.maturity_assessment.next_level == MaturityLevel.L2
        assert self.forge.inspector.perform_health_check(template.metadata.name).status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_governance_request(self):
        result = await self.forge.generate_from_intent(GOVERNANCE_TEXT)
        template = result.template
        assert template.metadata.phase == Phase.GOVERNANCE
        assert len(template.validation.security) > 0
        assert len(template.validation.compliance) > 0
        actions = [s.action for s in template.steps]
        assert "validate:policy" in actions
        assert "compliance:validate" in actions
        assert result.completion.defaults_applied["data_sensitivity"] == "confidential"

    @pytest.mark.asyncio
    async def test_intent_driven_request_is_at_the_top(self):
        result = await self.forge.generate_from_intent("Create an AI-powered workflow for triage")
        assert result.template.metadata.phase == Phase.INTENT_DRIVEN
        assert result.recommendations == [TOP_PHASE_MESSAGE]
        assert result.maturity_assessment.readiness_score == 100.0

    @pytest.mark.asyncio
    async def test_foundation_recommendations(self):
        result = await self.forge.generate_from_intent(NODE_API_TEXT, GenerationOptions(deploy=False))
        assert result.recommendations == [
            "Add automated deployment",
            "Add environment management",
            "Add ci/cd integration",
            "Add composite template creation",
        ]
        assert result.deployment_record is None
        assert result.deployment_result is None

    @pytest.mark.asyncio
    async def test_answers_complete_the_intent(self):
        provider = _make_provider({
            "capability_boundary": "Handles card payments and issues refunds",
            "runtime": "Python",
            "data_sensitivity": "PII",
        })
        result = await self.forge.generate_from_intent(
            "Create a payments service", GenerationOptions(deploy=False), provider,
        )
        assert result.completion.complete
        assert result.spec.parameters["runtime"].default == "python"
        assert "app/main.py" in result.template.skeleton

    @pytest.mark.asyncio
    async def test_non_interactive_ignores_provider(self):
        asked = []

        def provider(question):
            asked.append(question.field)
            return "Use Python"

        result = await self.forge.generate_from_intent(
            "Create a payments service",
            GenerationOptions(interactive=False, deploy=False),
            provider,
        )
        assert asked == []
        assert result.completion.rounds == 0
        assert set(result.completion.defaults_applied) == {
            "capability_boundary", "runtime", "data_sensitivity",
        }

    @pytest.mark.asyncio
    async def test_reprompt_recovers_a_bad_request(self):
        provider = _make_provider({"capability": "Create a payments service"})
        result = await self.forge.generate_from_intent(
            "hello there", GenerationOptions(deploy=False), provider,
        )
        assert result.fallbacks == []
        assert result.intent.capability == "payments-service"

    @pytest.mark.asyncio
    async def test_minimal_intent_fallback_is_flagged(self):
        result = await self.forge.generate_from_intent("hello there", GenerationOptions(deploy=False))
        assert result.fallbacks == ["intent"]
        assert result.intent.capability == FALLBACK_CAPABILITY
        assert result.template.metadata.type == "backend-service"

    @pytest.mark.asyncio
    async def test_no_recovery_raises(self, fast_workflow_config):
        forge = PortalForge(ForgeConfig(workflow=fast_workflow_config, enable_recovery=False))
        with pytest.raises(IntentParsingError):
            await forge.generate_from_intent("hello there")

    @pytest.mark.asyncio
    async def test_options_switch_stages_off(self):
        result = await self.forge.generate_from_intent(NODE_API_TEXT, GenerationOptions(
            preview=False, deploy=False, maturity_assessment=False,
        ))
        assert result.preview is None
        assert result.deployment_record is None
        assert result.maturity_assessment is None
        assert self.forge.registry.get_capabilities() == []

    @pytest.mark.asyncio
    async def test_feature_flags_set_defaults(self, fast_workflow_config):
        forge = PortalForge(ForgeConfig(
            workflow=fast_workflow_config,
            features=FeatureFlags(enable_preview=False, enable_gitops_workflow=False),
        ))
        result = await forge.generate_from_intent(NODE_API_TEXT)
        assert result.preview is None
        assert result.deployment_record is None
        overridden = await forge.generate_from_intent(NODE_API_TEXT, GenerationOptions(preview=True))
        assert overridden.preview is not None

    @pytest.mark.asyncio
    async def test_owner_option(self):
        result = await self.forge.generate_from_intent(
            NODE_API_TEXT, GenerationOptions(deploy=False, owner="team-payments"),
        )
        assert result.template.metadata.owner == "team-payments"


class TestGenerateFromSpec:
    @pytest.fixture(autouse=True)
    def _setup(self, fast_workflow_config):
        self.workflow_config = fast_workflow_config
        self.forge = PortalForge(ForgeConfig(workflow=fast_workflow_config))

    def _make_spec(self, artifact_type="backend-service", phase=Phase.FOUNDATION):
        return TemplateSpec(
            metadata=SpecMetadata(name="orders-api", description="Orders API"),
            type=artifact_type,
            phase=phase,
        )

    @pytest.mark.asyncio
    async def test_unsupported_type(self):
        with pytest.raises(UnsupportedTypeError) as exc_info:
            await self.forge.generate_from_spec(self._make_spec("ai-powered-workflow"))
        assert "ai-powered-workflow" in str(exc_info.value)
        assert "FOUNDATION" in str(exc_info.value)
        assert self.forge.registry.get_capabilities() == []

    @pytest.mark.asyncio
    async def test_spec_generation_is_deterministic(self):
        options = GenerationOptions(deploy=False)
        first = await self.forge.generate_from_spec(self._make_spec(), options)
        second = await self.forge.generate_from_spec(self._make_spec(), options)
        assert first.template == second.template
        assert first.intent is None

    @pytest.mark.asyncio
    async def test_minimal_template_fallback_is_flagged(self):
        generator = TemplateGenerator(renderer=SkeletonRenderer(loader=DictLoader({})))
        forge = PortalForge(ForgeConfig(workflow=self.workflow_config), generator=generator)
        result = await forge.generate_from_spec(self._make_spec())
        assert result.fallbacks == ["template"]
        assert result.template.minimal
        assert result.deployment_record.succeeded

    @pytest.mark.asyncio
    async def test_workflow_failure_propagates(self):
        faults = FaultPlan()
        faults.fail("merge", transient=False)
        registry = CapabilityRegistry()
        workflow = GitOpsWorkflow(
            InMemoryVcs(faults), InMemoryCi(faults), InMemoryPortal(faults),
            registry, self.workflow_config,
        )
        forge = PortalForge(
            ForgeConfig(workflow=self.workflow_config), registry=registry, workflow=workflow,
        )
        with pytest.raises(WorkflowFailedError) as exc_info:
            await forge.generate_from_spec(self._make_spec())
        assert exc_info.value.transition == "merge"
        assert registry.get_capability("orders-api") is None
        health = forge.inspector.perform_health_check("foundation-backend-service-orders-api")
        assert health.status == HealthStatus.FAILED

    @pytest.mark.asyncio
    async def test_conflicting_registration_stops_before_deploy(self):
        self.forge.registry.register_capability(Capability(
            id="legacy-orders",
            name="Legacy orders",
            maturity_level=MaturityLevel.L1,
            phase=Phase.FOUNDATION,
            templates=(TemplateRef(
                artifact_name="foundation-backend-service-orders-api",
                type="frontend-app",
                phase=Phase.FOUNDATION,
                maturity_level=MaturityLevel.L1,
            ),),
        ))
        with pytest.raises(CapabilityConflictError) as exc_info:
            await self.forge.generate_from_spec(self._make_spec())
        assert exc_info.value.resolutions[0].strategy == "rename"
        assert self.forge.registry.get_capability("orders-api") is None
