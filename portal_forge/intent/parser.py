"""
Intent Parser — turns a natural-language request into a ParsedIntent.

Deliberately rule-based: phrase tables and clause splitting, no language
model. Every output is a pure function of the input text.

Behavioral Contract:
- parse_intent raises IntentParsingError only on blank text or when no
  capability noun can be extracted
- validate_intent reports errors for invalid intents and one warning per
  missing required field (capability boundary, runtime, data sensitivity)
- refine_intent never concatenates feedback onto the stored description,
  so applying the same feedback twice yields an equal intent
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from portal_forge.classifier.phases import classify, resolve_artifact_type
from portal_forge.errors import IntentParsingError
from portal_forge.models.config import ParserConfig
from portal_forge.models.intent import ClarifyingQuestion, ParsedIntent
from portal_forge.models.validation import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)


_ACTION_VERBS = (
    "create", "build", "generate", "develop", "implement", "set up", "setup",
    "configure", "scaffold", "provision", "make",
)

_FILLER_WORDS = ("a", "an", "the", "i", "we", "need", "want", "to", "me", "us", "our", "my", "please")

# "Create a <name> with ...": the name ends at the first connective.
_NAME_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(v) for v in _ACTION_VERBS) + r")\s+"
    r"(?:(?:an?|the|new|me|us)\s+)*"
    r"(?P<name>.+?)"
    r"(?=\s+(?:with|that|which|for|to|using|in|on|from|where|so)\b|[,;:!?]|\.(?:\s|$)|$)",
    re.IGNORECASE,
)

CAPABILITY_NOUNS = (
    "service", "services", "api", "app", "application", "pipeline", "workflow",
    "template", "library", "sdk", "dashboard", "automation", "platform",
    "microservice", "microservices", "frontend", "backend", "site", "website",
    "portal", "job", "worker", "bot", "operator", "integration", "suite",
    "documentation", "docs", "catalog", "policy", "policies", "setup", "config",
)

_CONSTRAINT_MARKERS = (
    "must", "must not", "should not", "shall not", "cannot", "can't", "never",
    "no more than", "at most", "at least", "compliant with", "comply with",
    "limited to", "restricted to", "only", "within", "under", "without",
    "maximum", "minimum",
)

_CONSTRAINT_PATTERN = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(m) for m in _CONSTRAINT_MARKERS) + r")(?!\w)",
    re.IGNORECASE,
)

RUNTIME_KEYWORDS: Dict[str, str] = {
    "node.js": "nodejs", "nodejs": "nodejs", "node": "nodejs", "express": "nodejs",
    "typescript": "typescript", "javascript": "javascript",
    "python": "python", "fastapi": "python", "django": "python", "flask": "python",
    "java": "java", "spring": "java", "kotlin": "kotlin",
    "go": "go", "golang": "go", "rust": "rust",
    ".net": "dotnet", "c#": "dotnet", "dotnet": "dotnet", "ruby": "ruby", "rails": "ruby",
    "react": "react", "vue": "vue", "angular": "angular",
}

SENSITIVITY_KEYWORDS: Dict[str, str] = {
    "pii": "regulated", "personal data": "regulated", "phi": "regulated",
    "hipaa": "regulated", "gdpr": "regulated", "pci": "regulated",
    "regulated": "regulated", "sensitive": "confidential",
    "confidential": "confidential", "restricted": "confidential",
    "secret": "confidential", "internal": "internal", "public": "public",
    "non-sensitive": "public", "anonymous": "public",
}

_QUESTION_TEMPLATES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "capability_boundary": (
        "What should {capability} be responsible for, and what is out of scope?",
        ("Handles user sign-up and login only", "Exposes read-only order data"),
    ),
    "runtime": (
        "Which runtime or language should {capability} target?",
        ("Node.js", "Python", "Java", "Go"),
    ),
    "data_sensitivity": (
        "What is the most sensitive data {capability} will handle?",
        ("public", "internal", "confidential", "regulated (PII)"),
    ),
}


def _contains(text: str, phrase: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text, re.IGNORECASE) is not None


def _dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    lowered: List[str] = []
    for item in items:
        key = item.lower()
        if key not in lowered:
            lowered.append(key)
            seen.append(item)
    return tuple(seen)


def slugify(text: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    if len(slug) > max_length:
        slug = slug[:max_length].rsplit("-", 1)[0]
    return slug


def detect_runtime(text: str) -> Optional[str]:
    for keyword, runtime in RUNTIME_KEYWORDS.items():
        if _contains(text, keyword):
            return runtime
    return None


def detect_data_sensitivity(text: str) -> Optional[str]:
    """Most restrictive sensitivity label mentioned in the text."""
    order = ["regulated", "confidential", "internal", "public"]
    found = {label for kw, label in SENSITIVITY_KEYWORDS.items() if _contains(text, kw)}
    for label in order:
        if label in found:
            return label
    return None


class IntentParser:
    """Rule-based natural-language intent parser."""

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()

    # --- Parsing ---

    def parse_intent(self, text: str) -> ParsedIntent:
        """Parse request text into a ParsedIntent."""
        if text is None or not text.strip():
            raise IntentParsingError("Intent text is empty", text=text)

        description = " ".join(text.split())
        capability, remainder = self._extract_capability(description)
        if not capability:
            raise IntentParsingError(
                "Could not identify a capability to create; name what should be built "
                "(for example 'Create a payments API service')",
                text=text,
            )

        requirements, constraints = self._split_clauses(remainder)
        maturity, phase = classify([description, *requirements, *constraints])

        logger.info(
            "Parsed intent capability=%s phase=%s requirements=%d constraints=%d",
            capability, phase.value, len(requirements), len(constraints),
        )
        return ParsedIntent(
            capability=capability,
            description=description,
            requirements=requirements,
            constraints=constraints,
            maturity_level=maturity,
            phase=phase,
        )

    def _extract_capability(self, text: str) -> Tuple[Optional[str], str]:
        """Return (capability slug, text remaining after the name phrase)."""
        match = _NAME_PATTERN.search(text)
        if match:
            name = match.group("name").strip(" .")
            slug = slugify(name)
            if slug:
                return slug, text[match.end():]

        words = list(re.finditer(r"[\w./#+-]+", text))
        for idx, word in enumerate(words):
            token = word.group().lower().strip(".")
            if token in CAPABILITY_NOUNS:
                preceding = [
                    w.group() for w in words[:idx] if w.group().lower() not in _FILLER_WORDS
                ]
                phrase = " ".join(preceding[-2:] + [word.group()])
                return slugify(phrase), text[word.end():]
        return None, ""

    def _split_clauses(self, text: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        requirements: List[str] = []
        constraints: List[str] = []

        # Sentence boundaries: terminal punctuation followed by space, or ; / newline.
        sentences = re.split(r"(?<=[.!?])\s+|[;\n]+", text)
        for sentence in sentences:
            sentence = sentence.strip().rstrip(".!?").strip()
            sentence = re.sub(r"^(?:with|that|which|and|also|it|plus)\s+", "", sentence, flags=re.IGNORECASE)
            if not sentence:
                continue
            for clause in re.split(r"\s*,\s*", sentence):
                clause = re.sub(r"^(?:and|or|with|also)\s+", "", clause.strip(), flags=re.IGNORECASE)
                if not clause:
                    continue
                if _CONSTRAINT_PATTERN.search(clause):
                    constraints.append(clause)
                    continue
                for part in re.split(r"\s+and\s+", clause):
                    part = part.strip()
                    if len(part) >= 3 and re.search(r"[a-zA-Z]", part):
                        requirements.append(part)

        return _dedupe(requirements), _dedupe(constraints)

    def extract_requirements(self, text: str) -> List[str]:
        return list(self._split_clauses(text)[0])

    def identify_constraints(
        self,
        text: str,
        organizational_context: Optional[dict] = None,
    ) -> List[str]:
        """Constraint clauses in the text, plus any implied by org context."""
        constraints = list(self._split_clauses(text)[1])
        ctx = organizational_context or {}
        if ctx.get("security_level") == "high":
            constraints.append("Must implement enhanced security controls")
        if ctx.get("cloud_provider"):
            constraints.append(f"Must be compatible with {ctx['cloud_provider']}")
        if ctx.get("data_classification"):
            constraints.append(
                f"Must handle {ctx['data_classification']} data appropriately"
            )
        return list(_dedupe(constraints))

    # --- Validation ---

    def validate_intent(self, intent: ParsedIntent) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []
        signals = [intent.signal_text, *intent.requirements, *intent.constraints]

        if not intent.capability:
            errors.append(ValidationIssue(
                code="MISSING_CAPABILITY",
                message="Intent does not name a capability",
                field="capability",
            ))
        if resolve_artifact_type(intent.phase, signals) is None:
            errors.append(ValidationIssue(
                code="NO_SUPPORTED_TYPE",
                message=(
                    f"No template type supported in phase {intent.phase.value} "
                    f"matches this request"
                ),
                field="type",
            ))

        if len(intent.requirements) < self.config.min_requirements:
            warnings.append(ValidationIssue(
                code="INSUFFICIENT_REQUIREMENTS",
                message=(
                    f"Only {len(intent.requirements)} requirement(s) found; "
                    f"the capability boundary is unclear"
                ),
                field="capability_boundary",
            ))
        if detect_runtime(intent.signal_text) is None:
            warnings.append(ValidationIssue(
                code="MISSING_RUNTIME",
                message="No target runtime or language specified",
                field="runtime",
            ))
        if detect_data_sensitivity(intent.signal_text) is None:
            warnings.append(ValidationIssue(
                code="MISSING_DATA_SENSITIVITY",
                message="Data sensitivity is not specified",
                field="data_sensitivity",
            ))

        return ValidationResult.from_issues(errors, warnings)

    def generate_clarifying_questions(self, intent: ParsedIntent) -> List[ClarifyingQuestion]:
        """One question per missing field reported by validate_intent."""
        questions = []
        for field in self.validate_intent(intent).missing_fields():
            template, examples = _QUESTION_TEMPLATES[field]
            questions.append(ClarifyingQuestion(
                field=field,
                question=template.format(capability=intent.capability),
                examples=examples,
            ))
        return questions

    # --- Refinement ---

    def refine_intent(self, intent: ParsedIntent, feedback: str) -> ParsedIntent:
        """
        Re-run extraction over description + feedback.

        The base description is kept as-is, so refining twice with the
        same feedback gives an equal intent.
        """
        feedback = " ".join((feedback or "").split())
        if not feedback:
            return intent

        _, remainder = self._extract_capability(intent.description)
        base_reqs, base_cons = self._split_clauses(remainder)
        extra_reqs, extra_cons = self._split_clauses(feedback)
        requirements = _dedupe(base_reqs + extra_reqs)
        constraints = _dedupe(base_cons + extra_cons)
        maturity, phase = classify(
            [intent.description, feedback, *requirements, *constraints]
        )

        logger.info(
            "Refined intent capability=%s phase=%s requirements=%d",
            intent.capability, phase.value, len(requirements),
        )
        return ParsedIntent(
            capability=intent.capability,
            description=intent.description,
            requirements=requirements,
            constraints=constraints,
            maturity_level=maturity,
            phase=phase,
            feedback=feedback,
        )
