"""Tests for the Template Generator."""

import pytest
import yaml
from jinja2 import DictLoader

from portal_forge.classifier.phases import get_phase_profile
from portal_forge.errors import (
    CompositeNotSupportedError,
    TemplateRenderingError,
    UnsupportedTypeError,
    ValidationFailureError,
)
from portal_forge.generator.engine import (
    TOP_PHASE_MESSAGE,
    TemplateGenerator,
    recommend_evolution,
)
from portal_forge.generator.skeleton import SkeletonRenderer
from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import (
    ComponentSpec,
    ParameterField,
    SpecMetadata,
    Step,
    TemplateSpec,
)
from portal_forge.models.validation import Enforcement, Rule, ValidationRules


def _make_spec(phase=Phase.FOUNDATION, artifact_type="backend-service", name="orders-api", **kwargs):
    return TemplateSpec(
        metadata=SpecMetadata(name=name, description="Orders API", owner="team-orders"),
        type=artifact_type,
        phase=phase,
        **kwargs,
    )


def _first_type(phase: Phase) -> str:
    return get_phase_profile(phase).supported_types[0]


class TestGenerateTemplate:
    def setup_method(self):
        self.generator = TemplateGenerator()

    def test_foundation_backend_service(self):
        artifact = self.generator.generate_template(_make_spec())
        meta = artifact.metadata
        assert meta.name == "foundation-backend-service-orders-api"
        assert meta.capability_id == "orders-api"
        assert meta.maturity_level == MaturityLevel.L1
        assert meta.capabilities == get_phase_profile(Phase.FOUNDATION).required_capabilities
        assert meta.dependencies == ("git", "backstage-cli", "node", "npm")
        assert {"README.md", "catalog-info.yaml", "package.json", "src/index.js"} <= set(artifact.skeleton)
        assert artifact.documentation.readme == artifact.skeleton["README.md"]
        assert artifact.findings == ()
        assert not artifact.minimal

    def test_unsupported_type_is_refused(self):
        spec = _make_spec(artifact_type="ai-powered-workflow")
        with pytest.raises(UnsupportedTypeError) as exc_info:
            self.generator.generate_template(spec)
        message = str(exc_info.value)
        assert "ai-powered-workflow" in message
        assert "FOUNDATION" in message

    @pytest.mark.parametrize("phase", list(Phase))
    def test_generation_is_deterministic(self, phase):
        spec = _make_spec(phase=phase, artifact_type=_first_type(phase))
        first = TemplateGenerator().generate_template(spec)
        second = TemplateGenerator().generate_template(spec)
        assert first == second
        assert first.config_document == second.config_document
        assert first.skeleton == second.skeleton

    def test_skeleton_is_read_only(self):
        artifact = self.generator.generate_template(_make_spec())
        with pytest.raises(TypeError):
            artifact.skeleton["README.md"] = "# Replaced\n"
        assert artifact.model_dump()["skeleton"]["README.md"] == artifact.documentation.readme

    def test_editing_step_inputs_leaves_later_generations_alone(self):
        spec = _make_spec(phase=Phase.STANDARDIZATION, artifact_type="deployment-pipeline")
        artifact = self.generator.generate_template(spec)
        by_id = {s.id: s for s in artifact.steps}
        by_id["validate-standards"].input["standards"].append("tampered")
        by_id["pipeline"].input["environments"].clear()
        by_id["environments"].input["names"] = []

        fresh = {s.id: s for s in TemplateGenerator().generate_template(spec).steps}
        assert fresh["validate-standards"].input["standards"] == ["architecture", "security-scanning", "rbac"]
        assert fresh["pipeline"].input["environments"] == ["dev", "staging", "prod"]
        assert fresh["environments"].input["names"] == ["dev", "staging", "production"]

    @pytest.mark.parametrize("phase", list(Phase))
    def test_every_phase_generates_its_required_files(self, phase):
        artifact = self.generator.generate_template(
            _make_spec(phase=phase, artifact_type=_first_type(phase))
        )
        assert artifact.metadata.phase == phase
        assert artifact.metadata.maturity_level == phase.maturity
        assert all(v.enforcement == Enforcement.WARN for v in artifact.findings)
        for dep in get_phase_profile(phase).dependencies:
            assert dep in artifact.metadata.dependencies

    def test_python_runtime_skeleton(self):
        spec = _make_spec(parameters={"runtime": ParameterField(default="python")})
        artifact = self.generator.generate_template(spec)
        assert "app/main.py" in artifact.skeleton
        assert "pyproject.toml" in artifact.skeleton
        assert "package.json" not in artifact.skeleton
        assert artifact.metadata.dependencies[-2:] == ("python", "pip")

    def test_frontend_skeleton(self):
        artifact = self.generator.generate_template(_make_spec(artifact_type="frontend-app"))
        assert "src/App.jsx" in artifact.skeleton
        assert "react" in artifact.metadata.dependencies

    def test_governance_artifact(self):
        artifact = self.generator.generate_template(
            _make_spec(phase=Phase.GOVERNANCE, artifact_type="policy-enforced-service")
        )
        actions = [s.action for s in artifact.steps]
        assert "validate:policy" in actions
        assert "compliance:validate" in actions
        assert "policies/security.rego" in artifact.skeleton
        assert "compliance/frameworks.yaml" in artifact.skeleton
        assert len(artifact.validation.security) > 0
        assert len(artifact.validation.compliance) > 0
        assert "opa" in artifact.metadata.dependencies

    def test_spec_rules_are_added_to_phase_rules(self):
        spec = _make_spec(validation=ValidationRules(
            standards=(Rule(type="org", rule="Use the shared logger"),),
        ))
        artifact = self.generator.generate_template(spec)
        assert artifact.validation.rule_ids() == ["SEC-001", "CMP-001", "STD-001", "CUSTOM-STANDARDS-001"]

    def test_block_violation_aborts_generation(self):
        spec = _make_spec(parameters={
            "api_key": ParameterField(title="API key", default="sk-live-abcdef123"),
        })
        with pytest.raises(ValidationFailureError) as exc_info:
            self.generator.generate_template(spec)
        assert exc_info.value.rule_ids == ["SEC-001"]

    def test_warn_violation_becomes_finding(self):
        artifact = self.generator.generate_template(_make_spec(name="Orders_API"))
        assert [f.rule_id for f in artifact.findings] == ["CMP-001"]

    def test_rendering_failure_raises(self):
        generator = TemplateGenerator(renderer=SkeletonRenderer(loader=DictLoader({})))
        with pytest.raises(TemplateRenderingError) as exc_info:
            generator.generate_template(_make_spec())
        assert exc_info.value.path == "README.md"


class TestSteps:
    def setup_method(self):
        self.generator = TemplateGenerator()

    def _actions(self, spec):
        return [s.action for s in self.generator.build_steps(spec)]

    def test_foundation_order(self):
        spec = _make_spec(steps=(Step(id="lint", name="Lint", action="custom:lint"),))
        assert self._actions(spec) == [
            "fetch:template", "validate:basic", "custom:lint", "publish:github", "catalog:register",
        ]

    def test_dispatch_from_standardization(self):
        spec = _make_spec(phase=Phase.STANDARDIZATION, artifact_type="deployment-pipeline")
        assert self._actions(spec) == [
            "fetch:template",
            "validate:standards",
            "pipeline:create",
            "github:environment:create",
            "publish:github",
            "github:actions:dispatch",
            "catalog:register",
        ]

    def test_custom_bootstrap_steps_are_ignored(self):
        spec = _make_spec(steps=(
            Step(id="my-publish", name="Publish", action="publish:github"),
            Step(id="register", name="Register", action="custom:register"),
            Step(id="lint", name="Lint", action="custom:lint"),
            Step(id="lint", name="Lint again", action="custom:lint"),
        ))
        actions = self._actions(spec)
        assert actions.count("publish:github") == 1
        assert actions.count("custom:lint") == 1
        assert "custom:register" not in actions

    @pytest.mark.parametrize("phase", list(Phase))
    def test_bracketing_holds_in_every_phase(self, phase):
        spec = _make_spec(
            phase=phase,
            artifact_type=_first_type(phase),
            steps=(Step(id="extra", name="Extra", action="custom:extra"),),
        )
        actions = self._actions(spec)
        assert actions[0] == "fetch:template"
        assert actions[-1] == "catalog:register"
        assert actions.index("custom:extra") < actions.index("publish:github")

    def test_fetch_step_passes_every_parameter(self):
        spec = _make_spec(parameters={"runtime": ParameterField(default="nodejs")})
        fetch = self.generator.build_steps(spec)[0]
        assert fetch.input["values"]["runtime"] == "${{ parameters.runtime }}"
        assert list(fetch.input["values"]) == ["name", "description", "owner", "runtime"]


class TestConfigDocument:
    def test_document_shape(self):
        spec = _make_spec(parameters={
            "name": ParameterField(title="Name", default="orders-api", required=True),
            "runtime": ParameterField(title="Runtime", enum=("nodejs", "python"), default="nodejs"),
        })
        artifact = TemplateGenerator().generate_template(spec)
        doc = yaml.safe_load(artifact.config_document)
        assert doc["kind"] == "Template"
        assert doc["metadata"]["name"] == "foundation-backend-service-orders-api"
        assert doc["metadata"]["annotations"]["portal-forge/maturity"] == "L1"
        form = doc["spec"]["parameters"][0]
        assert form["required"] == ["name"]
        assert form["properties"]["runtime"]["enum"] == ["nodejs", "python"]
        assert doc["spec"]["steps"][0]["action"] == "fetch:template"
        assert artifact.yaml == artifact.config_document


class TestPreviewAndValidation:
    def setup_method(self):
        self.generator = TemplateGenerator()

    def test_preview_lists_directories_and_files(self):
        artifact = self.generator.generate_template(_make_spec())
        preview = self.generator.preview_template(artifact)
        assert "src/" in preview.file_tree
        assert "src/index.js" in preview.file_tree
        assert preview.file_tree == sorted(preview.file_tree)
        assert preview.rendered_yaml == artifact.config_document
        assert preview.validation_summary.is_valid
        assert preview.validation_summary.blocking_rules == 1

    def test_preview_has_no_side_effects(self):
        artifact = self.generator.generate_template(_make_spec())
        before = artifact.model_dump()
        self.generator.preview_template(artifact)
        assert artifact.model_dump() == before

    def test_validate_detects_tampered_skeleton(self):
        artifact = self.generator.generate_template(_make_spec())
        skeleton = dict(artifact.skeleton, **{"src/config.js": "password = supersecret1\n"})
        tampered = artifact.model_copy(update={"skeleton": skeleton})
        result = self.generator.validate_template(tampered)
        assert not result.is_valid
        assert [e.field for e in result.errors] == ["SEC-001"]


class TestEvolution:
    def test_foundation_recommends_standardization_capabilities(self):
        artifact = TemplateGenerator().generate_template(_make_spec())
        assert TemplateGenerator().get_evolution_recommendations(artifact) == [
            "Add automated deployment",
            "Add environment management",
            "Add ci/cd integration",
            "Add composite template creation",
        ]

    def test_top_phase_has_nowhere_to_go(self):
        artifact = TemplateGenerator().generate_template(
            _make_spec(phase=Phase.INTENT_DRIVEN, artifact_type="self-optimizing-service")
        )
        assert TemplateGenerator().get_evolution_recommendations(artifact) == [TOP_PHASE_MESSAGE]

    def test_present_capabilities_are_skipped(self):
        recs = recommend_evolution(Phase.FOUNDATION, ["Automated Deployment", "ci/cd integration"])
        assert recs == ["Add environment management", "Add composite template creation"]


class TestComposite:
    def setup_method(self):
        self.generator = TemplateGenerator()
        self.components = [
            ComponentSpec(name="orders-api", type="composite-service"),
            ComponentSpec(name="orders-pipeline", type="deployment-pipeline", description="Delivery"),
        ]

    def test_composite_orchestrates_components_in_order(self):
        composite = self.generator.generate_composite_template(
            Phase.STANDARDIZATION, "checkout", "Checkout stack", self.components,
        )
        assert composite.name == "standardization-composite-checkout"
        assert [c.metadata.name for c in composite.components] == [
            "standardization-composite-service-orders-api",
            "standardization-deployment-pipeline-orders-pipeline",
        ]
        assert [s.id for s in composite.steps] == [
            "start", "execute-orders-api", "execute-orders-pipeline", "complete",
        ]
        assert "steps['execute-orders-api']" in composite.steps[2].if_
        assert composite.components[1].metadata.description == "Delivery"
        doc = yaml.safe_load(composite.config_document)
        assert doc["spec"]["steps"][1]["if"].startswith("${{ steps['start']")

    @pytest.mark.parametrize("phase", [Phase.FOUNDATION, Phase.OPERATIONALIZATION])
    def test_unsupported_phases(self, phase):
        with pytest.raises(CompositeNotSupportedError):
            self.generator.generate_composite_template(phase, "checkout", "Checkout", self.components)

    def test_component_type_is_gated(self):
        with pytest.raises(UnsupportedTypeError):
            self.generator.generate_composite_template(
                Phase.GOVERNANCE, "checkout", "Checkout", self.components,
            )


class TestMinimalTemplate:
    def test_minimal_template_needs_no_renderer(self):
        generator = TemplateGenerator(renderer=SkeletonRenderer(loader=DictLoader({})))
        artifact = generator.generate_minimal_template(_make_spec())
        assert artifact.minimal
        assert set(artifact.skeleton) == {"README.md", "catalog-info.yaml"}
        assert [s.action for s in artifact.steps] == [
            "fetch:template", "publish:github", "catalog:register",
        ]
        catalog = yaml.safe_load(artifact.skeleton["catalog-info.yaml"])
        assert catalog["spec"]["owner"] == "team-orders"

    def test_minimal_template_is_flagged_in_preview(self):
        generator = TemplateGenerator()
        preview = generator.preview_template(generator.generate_minimal_template(_make_spec()))
        assert any("minimal" in m for m in preview.validation_summary.messages)
