"""
Template Generator — renders a TemplateSpec into a GeneratedArtifact.

Behavioral Contract:
- Pure: output depends only on the spec and the phase table; no I/O, no
  timestamps, so equal specs give byte-identical artifacts
- Refuses types not supported under the spec's phase (UnsupportedTypeError)
- Phase rules are mandatory; spec rules can only add to them
- Every artifact's steps start with fetch:template and end with
  catalog:register; custom steps sit before the publish steps
- A violated block rule aborts generation (ValidationFailureError);
  warn rules become findings on the artifact
"""

import copy
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from portal_forge.classifier.phases import (
    get_next_phase,
    get_phase_profile,
    is_type_supported,
)
from portal_forge.errors import (
    CompositeNotSupportedError,
    UnsupportedTypeError,
    ValidationFailureError,
)
from portal_forge.generator.rules import (
    RuleContext,
    evaluate_rules,
    merge_validation_rules,
    split_violations,
)
from portal_forge.generator.skeleton import (
    FRONTEND_TYPES,
    NODE_RUNTIMES,
    SkeletonRenderer,
    component_kind,
    plan_files,
)
from portal_forge.intent.completion import PHASE_DEFAULTS
from portal_forge.models.artifact import (
    ArtifactMetadata,
    CompositeArtifact,
    Documentation,
    GeneratedArtifact,
    TemplatePreview,
    ValidationSummary,
)
from portal_forge.models.maturity import Phase
from portal_forge.models.phase import PhaseProfile
from portal_forge.models.template import ComponentSpec, SpecMetadata, Step, TemplateSpec
from portal_forge.models.validation import ValidationIssue, ValidationResult, ValidationRules

logger = logging.getLogger(__name__)

TOP_PHASE_MESSAGE = "Template is already at the highest phase level"

BOOTSTRAP_ACTIONS = ("fetch:template", "publish:github", "catalog:register")
BASE_DEPENDENCIES = ("git", "backstage-cli")

_StepDef = Tuple[str, str, str, Dict[str, Any]]  # (id, name, action, input)

PHASE_STEPS: Mapping[Phase, Tuple[_StepDef, ...]] = MappingProxyType({
    Phase.FOUNDATION: (
        ("validate", "Validate basic structure", "validate:basic",
         {"checks": ["structure", "naming", "secrets"]}),
    ),
    Phase.STANDARDIZATION: (
        ("validate-standards", "Validate architectural standards", "validate:standards",
         {"standards": ["architecture", "security-scanning", "rbac"]}),
        ("pipeline", "Create CI/CD pipeline", "pipeline:create",
         {"environments": ["dev", "staging", "prod"], "approvalRequired": True}),
    ),
    Phase.OPERATIONALIZATION: (
        ("monitoring", "Create monitoring", "monitoring:create",
         {"slos": "ops/slo.yaml", "alerts": "monitoring/alerts.yaml"}),
        ("scaling", "Configure scaling", "scaling:configure",
         {"minReplicas": "${{ parameters.min_replicas }}"}),
        ("validate-operations", "Validate operational readiness", "validate:operations",
         {"runbook": "ops/runbook.md"}),
    ),
    Phase.GOVERNANCE: (
        ("validate-policy", "Validate policies", "validate:policy",
         {"engine": "opa", "policies": "policies/"}),
        ("audit", "Configure audit trail", "audit:configure",
         {"retentionDays": 365}),
        ("compliance", "Validate compliance", "compliance:validate",
         {"frameworks": ["sox", "gdpr", "hipaa"]}),
    ),
    Phase.INTENT_DRIVEN: (
        ("intent", "Process intent", "intent:process",
         {"model": "${{ parameters.ai_model }}"}),
        ("adaptive", "Configure adaptive behaviour", "adaptive:configure",
         {"guardrails": "ai/guardrails.yaml"}),
        ("validate-ai", "Validate AI governance", "validate:ai",
         {"modelCard": "ai/model-card.md"}),
    ),
})

if set(PHASE_STEPS) != set(Phase):
    raise RuntimeError("PHASE_STEPS must cover every Phase")

TYPE_STEPS: Mapping[str, Tuple[_StepDef, ...]] = MappingProxyType({
    "gitops-app": (
        ("argocd", "Create Argo CD application", "argocd:create-resources",
         {"appName": "${{ parameters.name }}", "path": "deploy"}),
    ),
    "documentation": (
        ("techdocs", "Build TechDocs site", "techdocs:generate", {"siteDir": "site"}),
    ),
    "deployment-pipeline": (
        ("environments", "Create deployment environments", "github:environment:create",
         {"names": ["dev", "staging", "production"]}),
    ),
    "backup-automation": (
        ("backup", "Schedule backups", "backup:schedule", {"schedule": "0 2 * * *"}),
    ),
    "risk-assessment": (
        ("risk", "Run risk assessment", "risk:assess", {"framework": "nist-800-30"}),
    ),
    "self-optimizing-service": (
        ("optimization", "Configure self-optimization", "optimization:configure",
         {"targets": ["latency", "cost"]}),
    ),
})


def _step(defn: _StepDef) -> Step:
    step_id, name, action, step_input = defn
    # The tables are shared by every generation; each step owns its input.
    return Step(id=step_id, name=name, action=action, input=copy.deepcopy(step_input))


def recommend_evolution(phase: Phase, capabilities: Iterable[str]) -> List[str]:
    """Successor-phase capabilities not yet present, as 'Add <capability>'."""
    next_phase = get_next_phase(phase)
    if next_phase is None:
        return [TOP_PHASE_MESSAGE]
    have = {c.lower() for c in capabilities}
    return [
        f"Add {cap}"
        for cap in get_phase_profile(next_phase).required_capabilities
        if cap.lower() not in have
    ]


def _runtime_for(spec: TemplateSpec) -> str:
    param = spec.parameters.get("runtime")
    if param is not None and param.default:
        return str(param.default)
    if spec.type in FRONTEND_TYPES:
        return "react"
    return PHASE_DEFAULTS[spec.phase]["runtime"]


def _dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return tuple(out)


class TemplateGenerator:
    """Turns TemplateSpecs into portal templates plus repository skeletons."""

    def __init__(
        self,
        renderer: Optional[SkeletonRenderer] = None,
        organization: str = "platform-templates",
        base_branch: str = "main",
    ):
        self.renderer = renderer or SkeletonRenderer()
        self.organization = organization
        self.base_branch = base_branch

    # --- Generation ---

    def generate_template(self, spec: TemplateSpec) -> GeneratedArtifact:
        if not is_type_supported(spec.phase, spec.type):
            raise UnsupportedTypeError(spec.phase, spec.type)

        profile = get_phase_profile(spec.phase)
        rules = merge_validation_rules(profile.validation_rules, spec.validation)
        steps = self.build_steps(spec)
        metadata = self._build_metadata(spec, profile)

        context = self._render_context(spec, profile, metadata, rules, steps)
        runtime = context["runtime"]
        skeleton = self.renderer.render_skeleton(
            plan_files(spec.type, spec.phase.rank, runtime), context
        )
        documentation = Documentation(
            readme=skeleton["README.md"],
            usage=self.renderer.render_usage(context),
        )
        config_document = self.render_config_document(spec, metadata, steps)

        violations = evaluate_rules(rules, RuleContext(
            name=metadata.name,
            skeleton=skeleton,
            parameters=spec.parameter_values(),
            actions=[s.action for s in steps],
        ))
        blocking, findings = split_violations(violations)
        if blocking:
            logger.warning(
                "Generation of %s blocked by rules: %s",
                metadata.name, ", ".join(v.rule_id for v in blocking),
            )
            raise ValidationFailureError(blocking)

        logger.info(
            "Generated %s (%d files, %d steps, %d findings)",
            metadata.name, len(skeleton), len(steps), len(findings),
        )
        return GeneratedArtifact(
            config_document=config_document,
            skeleton=skeleton,
            documentation=documentation,
            validation=rules,
            metadata=metadata,
            steps=tuple(steps),
            findings=tuple(findings),
        )

    def generate_minimal_template(self, spec: TemplateSpec) -> GeneratedArtifact:
        """
        Recovery fallback: bootstrap steps only, no rendered skeleton.

        Built without the template engine so it cannot fail on rendering.
        """
        profile = get_phase_profile(spec.phase)
        rules = merge_validation_rules(profile.validation_rules, spec.validation)
        metadata = self._build_metadata(spec, profile)
        steps = [self._fetch_step(spec), self._publish_step(), self._register_step()]
        catalog = yaml.safe_dump(
            {
                "apiVersion": "backstage.io/v1alpha1",
                "kind": "Component",
                "metadata": {"name": spec.metadata.name, "description": spec.metadata.description},
                "spec": {
                    "type": component_kind(spec.type),
                    "lifecycle": "experimental",
                    "owner": spec.metadata.owner,
                },
            },
            sort_keys=False,
        )
        readme = f"# {metadata.title}\n\n{spec.metadata.description}\n"
        logger.warning("Using minimal template for %s", metadata.name)
        return GeneratedArtifact(
            config_document=self.render_config_document(spec, metadata, steps),
            skeleton={"README.md": readme, "catalog-info.yaml": catalog},
            documentation=Documentation(
                readme=readme,
                usage="Minimal template: fill in the skeleton after publishing.\n",
            ),
            validation=rules,
            metadata=metadata,
            steps=tuple(steps),
            minimal=True,
        )

    def build_steps(self, spec: TemplateSpec) -> List[Step]:
        """fetch, phase steps, type steps, custom steps, publish, register."""
        steps = [self._fetch_step(spec)]
        steps += [_step(d) for d in PHASE_STEPS[spec.phase]]
        steps += [_step(d) for d in TYPE_STEPS.get(spec.type, ())]

        seen = {s.id for s in steps} | {"publish", "deploy", "register"}
        for custom in spec.steps:
            if custom.action in BOOTSTRAP_ACTIONS or custom.id in seen:
                continue
            seen.add(custom.id)
            steps.append(custom)

        steps.append(self._publish_step())
        if spec.phase.rank >= Phase.STANDARDIZATION.rank:
            steps.append(Step(
                id="deploy",
                name="Trigger deployment",
                action="github:actions:dispatch",
                input={
                    "workflowId": "ci.yaml",
                    "repoUrl": "${{ parameters.repoUrl }}",
                    "branchOrTagName": self.base_branch,
                },
            ))
        steps.append(self._register_step())
        return steps

    def _fetch_step(self, spec: TemplateSpec) -> Step:
        keys = _dedupe(["name", "description", "owner", *spec.parameters.keys()])
        return Step(
            id="fetch",
            name="Fetch skeleton",
            action="fetch:template",
            input={
                "url": "./skeleton",
                "values": {k: f"${{{{ parameters.{k} }}}}" for k in keys},
            },
        )

    def _publish_step(self) -> Step:
        return Step(
            id="publish",
            name="Publish to GitHub",
            action="publish:github",
            input={
                "allowedHosts": ["github.com"],
                "description": "This is ${{ parameters.name }}",
                "repoUrl": "${{ parameters.repoUrl }}",
                "defaultBranch": self.base_branch,
            },
        )

    def _register_step(self) -> Step:
        return Step(
            id="register",
            name="Register in catalog",
            action="catalog:register",
            input={
                "repoContentsUrl": "${{ steps['publish'].output.repoContentsUrl }}",
                "catalogInfoPath": "/catalog-info.yaml",
            },
        )

    def _build_metadata(self, spec: TemplateSpec, profile: PhaseProfile) -> ArtifactMetadata:
        runtime = _runtime_for(spec)
        runtime_tools: Tuple[str, ...] = ()
        if spec.type in FRONTEND_TYPES:
            runtime_tools = ("node", "npm", "react")
        elif runtime in NODE_RUNTIMES:
            runtime_tools = ("node", "npm")
        elif runtime == "python":
            runtime_tools = ("python", "pip")

        return ArtifactMetadata(
            name=f"{spec.phase.slug}-{spec.type}-{spec.metadata.name}",
            capability_id=spec.metadata.name,
            title=spec.metadata.title or spec.metadata.name.replace("-", " ").title(),
            description=spec.metadata.description,
            owner=spec.metadata.owner,
            type=spec.type,
            maturity_level=spec.phase.maturity,
            phase=spec.phase,
            capabilities=profile.required_capabilities,
            dependencies=_dedupe(BASE_DEPENDENCIES + runtime_tools + profile.dependencies),
        )

    def _render_context(
        self,
        spec: TemplateSpec,
        profile: PhaseProfile,
        metadata: ArtifactMetadata,
        rules: ValidationRules,
        steps: List[Step],
    ) -> Dict[str, Any]:
        return {
            "metadata": {
                "name": spec.metadata.name,
                "title": metadata.title,
                "description": spec.metadata.description,
                "owner": spec.metadata.owner,
            },
            "values": spec.parameter_values(),
            "parameters": [
                (name, p.model_dump(mode="json")) for name, p in spec.parameters.items()
            ],
            "artifact_type": spec.type,
            "component_kind": component_kind(spec.type),
            "phase": spec.phase.value,
            "phase_name": profile.name,
            "phase_rank": spec.phase.rank,
            "maturity": spec.phase.maturity.value,
            "runtime": _runtime_for(spec),
            "requirements": list(spec.requirements),
            "constraints": list(spec.constraints),
            "rules": [r.model_dump(mode="json") for r in rules.all_rules()],
            "dependencies": list(metadata.dependencies),
            "tags": list(_dedupe(spec.metadata.tags or (spec.phase.slug, spec.type))),
            "organization": self.organization,
            "base_branch": self.base_branch,
            "environments": ["dev", "staging", "prod"],
            "actions": [s.action for s in steps],
        }

    def render_config_document(
        self,
        spec: TemplateSpec,
        metadata: ArtifactMetadata,
        steps: Sequence[Step],
    ) -> str:
        """Portal template definition, rendered with PyYAML."""
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in spec.parameters.items():
            schema: Dict[str, Any] = {"title": param.title or name, "type": param.type}
            if param.description:
                schema["description"] = param.description
            if param.default is not None:
                schema["default"] = param.default if not isinstance(param.default, tuple) else list(param.default)
            if param.enum:
                schema["enum"] = list(param.enum)
            if param.pattern:
                schema["pattern"] = param.pattern
            if param.ui_field:
                schema["ui:field"] = param.ui_field
            if param.required:
                required.append(name)
            properties[name] = schema

        doc = {
            "apiVersion": "scaffolder.backstage.io/v1beta3",
            "kind": "Template",
            "metadata": {
                "name": metadata.name,
                "title": metadata.title,
                "description": metadata.description,
                "tags": list(_dedupe(spec.metadata.tags or (spec.phase.slug, spec.type))),
                "annotations": {
                    "portal-forge/phase": spec.phase.value,
                    "portal-forge/maturity": spec.phase.maturity.value,
                    "portal-forge/type": spec.type,
                },
            },
            "spec": {
                "owner": metadata.owner,
                "type": component_kind(spec.type),
                "parameters": [{
                    "title": "Provide information",
                    "required": required,
                    "properties": properties,
                }],
                "steps": [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in steps],
                "output": spec.output.model_dump(mode="json"),
            },
        }
        return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False, allow_unicode=True)

    # --- Inspection of generated artifacts ---

    def validate_template(self, artifact: GeneratedArtifact) -> ValidationResult:
        """Re-check an artifact against the current phase table and rules."""
        meta = artifact.metadata
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        if not is_type_supported(meta.phase, meta.type):
            errors.append(ValidationIssue(
                code="UNSUPPORTED_TYPE",
                message=f"Type '{meta.type}' is not supported in phase {meta.phase.value}",
                field="type",
            ))

        required = get_phase_profile(meta.phase).required_capabilities
        have = {c.lower() for c in meta.capabilities}
        for cap in required:
            if cap.lower() not in have:
                warnings.append(ValidationIssue(
                    code="MISSING_CAPABILITY_TAG",
                    message=f"Phase {meta.phase.value} expects capability '{cap}'",
                    field="capabilities",
                ))

        violations = evaluate_rules(artifact.validation, RuleContext(
            name=meta.name,
            skeleton=artifact.skeleton,
            actions=[s.action for s in artifact.steps],
        ))
        blocking, findings = split_violations(violations)
        for v in blocking:
            errors.append(ValidationIssue(code="RULE_VIOLATION", message=f"{v.rule_id}: {v.detail}", field=v.rule_id))
        for v in findings:
            warnings.append(ValidationIssue(code="RULE_FINDING", message=f"{v.rule_id}: {v.detail}", field=v.rule_id))

        if artifact.minimal:
            warnings.append(ValidationIssue(
                code="MINIMAL_TEMPLATE",
                message="Artifact is a minimal fallback template",
            ))

        return ValidationResult.from_issues(errors, warnings)

    def preview_template(self, artifact: GeneratedArtifact) -> TemplatePreview:
        """Side-effect-free projection for display."""
        tree = set()
        for path in artifact.skeleton:
            parts = path.split("/")
            for i in range(1, len(parts)):
                tree.add("/".join(parts[:i]) + "/")
            tree.add(path)

        result = self.validate_template(artifact)
        return TemplatePreview(
            rendered_yaml=artifact.config_document,
            file_tree=sorted(tree),
            validation_summary=ValidationSummary(
                is_valid=result.is_valid,
                error_count=len(result.errors),
                warning_count=len(result.warnings),
                blocking_rules=len(artifact.validation.blocking_rules()),
                messages=[i.message for i in result.errors + result.warnings],
            ),
        )

    def get_evolution_recommendations(self, artifact: GeneratedArtifact) -> List[str]:
        return recommend_evolution(artifact.metadata.phase, artifact.metadata.capabilities)

    # --- Composites ---

    def generate_composite_template(
        self,
        phase: Phase,
        name: str,
        description: str,
        component_specs: Sequence[ComponentSpec],
        owner: str = "platform-team",
    ) -> CompositeArtifact:
        """Generate each component, then orchestrate them in order."""
        profile = get_phase_profile(phase)
        if not profile.supports_composites:
            raise CompositeNotSupportedError(phase)

        composite_name = f"{phase.slug}-composite-{name}"
        components: List[GeneratedArtifact] = []
        for comp in component_specs:
            components.append(self.generate_template(TemplateSpec(
                metadata=SpecMetadata(
                    name=comp.name,
                    description=comp.description or description,
                    owner=owner,
                    tags=(phase.slug, comp.type, "composite-component"),
                ),
                type=comp.type,
                phase=phase,
                parameters=comp.parameters,
                requirements=comp.requirements,
            )))

        steps = [Step(
            id="start",
            name="Start orchestration",
            action="orchestration:start",
            input={"composite": composite_name, "components": [c.name for c in component_specs]},
        )]
        previous = "start"
        for comp, artifact in zip(component_specs, components):
            step_id = f"execute-{comp.name}"
            steps.append(Step(
                id=step_id,
                name=f"Execute {comp.name}",
                action="template:execute",
                input={"template": artifact.metadata.name},
                if_=f"${{{{ steps['{previous}'].output.status == 'completed' }}}}",
            ))
            previous = step_id
        steps.append(Step(
            id="complete",
            name="Complete orchestration",
            action="orchestration:complete",
            input={"composite": composite_name},
            if_=f"${{{{ steps['{previous}'].output.status == 'completed' }}}}",
        ))

        doc = {
            "apiVersion": "scaffolder.backstage.io/v1beta3",
            "kind": "Template",
            "metadata": {
                "name": composite_name,
                "description": description,
                "tags": [phase.slug, "composite"],
            },
            "spec": {
                "owner": owner,
                "type": "composite",
                "steps": [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in steps],
            },
        }
        logger.info("Generated composite %s with %d components", composite_name, len(components))
        return CompositeArtifact(
            name=composite_name,
            phase=phase,
            description=description,
            components=tuple(components),
            steps=tuple(steps),
            config_document=yaml.safe_dump(doc, sort_keys=False, default_flow_style=False),
        )
