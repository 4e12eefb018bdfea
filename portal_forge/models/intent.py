"""Parsed intent — the structured reading of a natural-language request."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from portal_forge.models.maturity import MaturityLevel, Phase


class ParsedIntent(BaseModel):
    """
    Immutable. Refinement produces a new value; `description` always holds
    the original request text and `feedback` the latest refinement.
    """

    model_config = ConfigDict(frozen=True)

    capability: str                         # Slug, e.g., "node-js-rest-api-service"
    description: str
    requirements: Tuple[str, ...] = ()
    constraints: Tuple[str, ...] = ()
    maturity_level: MaturityLevel = MaturityLevel.L1
    phase: Phase = Phase.FOUNDATION
    feedback: Optional[str] = None

    @property
    def signal_text(self) -> str:
        """Description plus feedback: everything the user has said."""
        if self.feedback:
            return f"{self.description} {self.feedback}"
        return self.description


class ClarifyingQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str                              # "capability_boundary" | "runtime" | "data_sensitivity"
    question: str
    examples: Tuple[str, ...] = ()


class ClarificationTurn(BaseModel):
    round: int
    question: ClarifyingQuestion
    answer: str


class CompletionResult(BaseModel):
    """Outcome of the interactive completion loop."""

    intent: ParsedIntent
    rounds: int = 0
    transcript: List[ClarificationTurn] = []
    defaults_applied: dict = {}             # field -> default value used
    complete: bool = False                  # True if no field needed a default
