"""
portal-forge API — FastAPI endpoints.

Exposes the orchestrator and its components via a REST API for:
- Intent parsing and refinement
- Phase configuration lookup
- Template generation (from intent, from spec, composite)
- Capability registry queries and updates
- Template inspection (health, usage, schedules)
- Runtime configuration
"""

from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from portal_forge.classifier.phases import PHASE_TABLE, get_next_phase
from portal_forge.errors import (
    CapabilityConflictError,
    CapabilityNotFoundError,
    ForgeError,
    InvalidTransitionError,
    WorkflowFailedError,
)
from portal_forge.inspector.maturity import assess_maturity
from portal_forge.models.capability import CapabilityFilter
from portal_forge.models.config import ForgeConfig
from portal_forge.models.intent import ClarifyingQuestion, ParsedIntent
from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import ComponentSpec, TemplateSpec
from portal_forge.orchestrator.pipeline import GenerationOptions, GenerationResult, PortalForge


# --- Request/Response Models ---

class ParseRequest(BaseModel):
    text: str


class RefineRequest(BaseModel):
    intent: ParsedIntent
    feedback: str


class GenerateRequest(BaseModel):
    text: str
    options: GenerationOptions = GenerationOptions()
    answers: Dict[str, str] = {}            # Clarifying-question field -> answer


class SpecGenerateRequest(BaseModel):
    spec: TemplateSpec
    options: GenerationOptions = GenerationOptions()


class CompositeRequest(BaseModel):
    phase: Phase
    name: str
    description: str = ""
    components: List[ComponentSpec]
    owner: str = "platform-team"


class MaturityUpdateRequest(BaseModel):
    level: MaturityLevel


class DeprecateRequest(BaseModel):
    reason: str
    migration_path: Optional[str] = None


class ExecutionRequest(BaseModel):
    artifact_name: str
    success: bool
    duration_seconds: float
    user: Optional[str] = None
    failure_reason: Optional[str] = None


class ScheduleRequest(BaseModel):
    cron: Optional[str] = None


# Error class -> HTTP status; anything else is a 422.
_STATUS_CODES = {
    CapabilityNotFoundError: 404,
    CapabilityConflictError: 409,
    InvalidTransitionError: 409,
    WorkflowFailedError: 502,
}


def _http_error(e: ForgeError) -> HTTPException:
    return HTTPException(status_code=_STATUS_CODES.get(type(e), 422), detail=e.to_dict())


def _result_dict(result: GenerationResult) -> dict:
    body = result.model_dump(mode="json", by_alias=True)
    deployment = result.deployment_result
    body["deployment_result"] = deployment.model_dump(mode="json") if deployment else None
    return body


# --- Application Factory ---

def create_app(
    forge: Optional[PortalForge] = None,
    config: Optional[ForgeConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="portal-forge API",
        description="Maturity-aware developer-portal template generation",
        version="0.1.0",
    )

    pf = forge or PortalForge(config=config)
    app.state.forge = pf

    # === INTENTS ===

    @app.post("/intents/parse")
    def parse_intent(req: ParseRequest):
        """Parse text and report what is still missing."""
        try:
            intent = pf.parser.parse_intent(req.text)
        except ForgeError as e:
            raise _http_error(e)
        validation = pf.parser.validate_intent(intent)
        return {
            "intent": intent.model_dump(mode="json"),
            "validation": validation.model_dump(mode="json"),
            "questions": [
                q.model_dump(mode="json") for q in pf.parser.generate_clarifying_questions(intent)
            ],
        }

    @app.post("/intents/refine")
    def refine_intent(req: RefineRequest):
        intent = pf.parser.refine_intent(req.intent, req.feedback)
        return {
            "intent": intent.model_dump(mode="json"),
            "validation": pf.parser.validate_intent(intent).model_dump(mode="json"),
        }

    # === PHASES ===

    @app.get("/phases")
    def list_phases():
        return [
            {
                "phase": phase.value,
                "maturity": profile.maturity.value,
                "name": profile.name,
                "supported_types": list(profile.supported_types),
                "supports_composites": profile.supports_composites,
            }
            for phase, profile in PHASE_TABLE.items()
        ]

    @app.get("/phases/{phase}")
    def get_phase(phase: Phase):
        body = PHASE_TABLE[phase].model_dump(mode="json")
        next_phase = get_next_phase(phase)
        body["next_phase"] = next_phase.value if next_phase else None
        return body

    # === TEMPLATES ===

    @app.post("/templates/generate")
    async def generate_from_intent(req: GenerateRequest):
        """Full pipeline from request text."""

        def answer(question: ClarifyingQuestion) -> str:
            return req.answers.get(question.field, "")

        try:
            result = await pf.generate_from_intent(
                req.text, req.options, answer if req.answers else None
            )
        except ForgeError as e:
            raise _http_error(e)
        return _result_dict(result)

    @app.post("/templates/from-spec")
    async def generate_from_spec(req: SpecGenerateRequest):
        try:
            result = await pf.generate_from_spec(req.spec, req.options)
        except ForgeError as e:
            raise _http_error(e)
        return _result_dict(result)

    @app.post("/templates/composite")
    def generate_composite(req: CompositeRequest):
        try:
            composite = pf.generator.generate_composite_template(
                req.phase, req.name, req.description, req.components, req.owner
            )
        except ForgeError as e:
            raise _http_error(e)
        return composite.model_dump(mode="json", by_alias=True)

    # === CAPABILITIES ===

    @app.get("/capabilities")
    def list_capabilities(
        phase: Optional[Phase] = None,
        maturity_level: Optional[MaturityLevel] = None,
        tag: Optional[str] = None,
        search: Optional[str] = None,
        include_deprecated: bool = True,
    ):
        caps = pf.registry.get_capabilities(CapabilityFilter(
            phase=phase,
            maturity_level=maturity_level,
            tag=tag,
            search=search,
            include_deprecated=include_deprecated,
        ))
        return [c.model_dump(mode="json") for c in caps]

    @app.get("/capabilities/{capability_id}")
    def get_capability(capability_id: str):
        capability = pf.registry.get_capability(capability_id)
        if capability is None:
            raise _http_error(CapabilityNotFoundError(capability_id))
        return capability.model_dump(mode="json")

    @app.put("/capabilities/{capability_id}/maturity")
    def update_maturity(capability_id: str, req: MaturityUpdateRequest):
        try:
            capability = pf.registry.update_maturity(capability_id, req.level)
        except ForgeError as e:
            raise _http_error(e)
        return capability.model_dump(mode="json")

    @app.post("/capabilities/{capability_id}/deprecate")
    def deprecate_capability(capability_id: str, req: DeprecateRequest):
        try:
            capability = pf.registry.deprecate_capability(
                capability_id, req.reason, req.migration_path
            )
        except ForgeError as e:
            raise _http_error(e)
        return capability.model_dump(mode="json")

    @app.get("/capabilities/{capability_id}/suggestions")
    def suggest_improvements(capability_id: str):
        try:
            return {"suggestions": pf.registry.suggest_improvements(capability_id)}
        except ForgeError as e:
            raise _http_error(e)

    @app.get("/capabilities/{capability_id}/assessment")
    def get_assessment(capability_id: str):
        capability = pf.registry.get_capability(capability_id)
        if capability is None:
            raise _http_error(CapabilityNotFoundError(capability_id))
        return assess_maturity(capability).model_dump(mode="json")

    # === INSPECTOR ===

    @app.get("/inspector/health")
    def overall_health():
        return pf.inspector.get_overall_health_status().model_dump(mode="json")

    @app.get("/inspector/health/{artifact_name}")
    def artifact_health(artifact_name: str):
        return pf.inspector.perform_health_check(artifact_name).model_dump(mode="json")

    @app.get("/inspector/usage/{artifact_name}")
    def artifact_usage(artifact_name: str):
        return pf.inspector.monitor_usage(artifact_name).model_dump(mode="json")

    @app.post("/inspector/executions")
    def record_execution(req: ExecutionRequest):
        sample = pf.inspector.record_execution(
            req.artifact_name,
            req.success,
            req.duration_seconds,
            user=req.user,
            failure_reason=req.failure_reason,
        )
        return sample.model_dump(mode="json")

    @app.put("/inspector/schedules/{artifact_name}")
    def schedule_checks(artifact_name: str, req: ScheduleRequest):
        try:
            next_run = pf.inspector.schedule_health_checks(artifact_name, req.cron)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"artifact_name": artifact_name, "next_check_at": next_run.isoformat()}

    @app.delete("/inspector/schedules/{artifact_name}")
    def cancel_checks(artifact_name: str):
        if not pf.inspector.cancel_health_checks(artifact_name):
            raise HTTPException(status_code=404, detail="No schedule for artifact")
        return {"status": "cancelled", "artifact_name": artifact_name}

    # === CONFIG ===

    @app.get("/config")
    def get_config():
        return pf.config.model_dump()

    @app.put("/config")
    def update_config(new_config: ForgeConfig):
        """Replace the configuration of every component."""
        pf.config = new_config
        pf.parser.config = new_config.parser
        pf.completion.max_rounds = new_config.parser.max_clarification_rounds
        pf.generator.organization = new_config.organization
        pf.generator.base_branch = new_config.workflow.base_branch
        pf.workflow.config = new_config.workflow
        pf.inspector.config = new_config.inspector
        return new_config.model_dump()

    return app
