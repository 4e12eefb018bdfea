"""Template specification — the contract handed to the Template Generator."""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from portal_forge.models.maturity import Phase
from portal_forge.models.validation import ValidationRules


class ParameterField(BaseModel):
    """One field of the template's parameter form (JSON-schema subset)."""

    model_config = ConfigDict(frozen=True)

    type: str = "string"                    # "string" | "boolean" | "number" | "array"
    title: str = ""
    description: Optional[str] = None
    default: Any = None
    enum: Optional[Tuple[str, ...]] = None
    pattern: Optional[str] = None
    required: bool = False
    ui_field: Optional[str] = None          # Portal widget, e.g., "RepoUrlPicker"


class Step(BaseModel):
    """A scaffolder step: an action id and its inputs."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    action: str                             # e.g., "fetch:template"
    input: Dict[str, Any] = {}
    if_: Optional[str] = Field(default=None, alias="if")


class TemplateOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    links: Tuple[Dict[str, str], ...] = ()
    text: Tuple[Dict[str, str], ...] = ()


class SpecMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    tags: Tuple[str, ...] = ()
    owner: str = "platform-team"
    title: Optional[str] = None


class TemplateSpec(BaseModel):
    """
    A complete, immutable description of a template to generate.

    Usually produced by promoting a ParsedIntent; may also be supplied
    directly by callers that bypass intent parsing.
    """

    model_config = ConfigDict(frozen=True)

    metadata: SpecMetadata
    type: str                               # Must be supported under `phase`
    phase: Phase = Phase.FOUNDATION
    parameters: Dict[str, ParameterField] = {}
    steps: Tuple[Step, ...] = ()            # Custom steps, placed before publish
    output: TemplateOutput = TemplateOutput()
    validation: ValidationRules = ValidationRules()
    requirements: Tuple[str, ...] = ()
    constraints: Tuple[str, ...] = ()

    def parameter_values(self) -> Dict[str, Any]:
        """Default value of every parameter, with metadata filled in."""
        values: Dict[str, Any] = {
            "name": self.metadata.name,
            "description": self.metadata.description,
            "owner": self.metadata.owner,
        }
        for key, param in self.parameters.items():
            if param.default is not None:
                values[key] = param.default
        return values


class ComponentSpec(BaseModel):
    """One component of a composite template."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    description: str = ""
    parameters: Dict[str, ParameterField] = {}
    requirements: Tuple[str, ...] = ()
