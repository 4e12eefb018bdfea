"""
Phase/Maturity Classifier.

Maps text signals to a (MaturityLevel, Phase) pair and answers questions
about what each phase supports. Everything here is a pure function of its
inputs and the phase table, which is built once at import time and is
read-only afterwards.

Behavioral Contract:
- An explicit override always wins
- Strong phrases are checked highest phase first, so a request that
  mentions "policy enforcement" is never classified as plain Foundation
- Otherwise the phase with most keyword hits wins; ties go to the higher phase
- No signal at all yields (L1, FOUNDATION)
- is_type_supported / get_supported_types never raise
- Validation rules are cumulative, so blocking strictness never decreases
  from one phase to the next
"""

import re
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.phase import PhaseProfile
from portal_forge.models.validation import Enforcement, Rule, ValidationRules

BLOCK = Enforcement.BLOCK
WARN = Enforcement.WARN


# --- Per-phase own rules (the table accumulates them) ---

_OWN_RULES: Dict[Phase, ValidationRules] = {
    Phase.FOUNDATION: ValidationRules(
        security=(
            Rule(id="SEC-001", type="baseline", rule="No hardcoded secrets", enforcement=BLOCK),
        ),
        compliance=(
            Rule(id="CMP-001", type="naming", rule="Follow naming conventions", enforcement=WARN),
        ),
        standards=(
            Rule(id="STD-001", type="structure", rule="Standard project structure", enforcement=WARN),
        ),
    ),
    Phase.STANDARDIZATION: ValidationRules(
        security=(
            Rule(id="SEC-002", type="baseline", rule="Security scanning integration", enforcement=BLOCK),
            Rule(id="SEC-003", type="access", rule="Proper RBAC configuration", enforcement=BLOCK),
        ),
        compliance=(
            Rule(id="CMP-002", type="deployment", rule="Deployment approval gates", enforcement=BLOCK),
        ),
        standards=(
            Rule(id="STD-002", type="architecture", rule="Architectural standards compliance", enforcement=BLOCK),
        ),
        cost=(
            Rule(id="CST-001", type="resource", rule="Resource limit enforcement", enforcement=WARN),
        ),
    ),
    Phase.OPERATIONALIZATION: ValidationRules(
        security=(
            Rule(id="SEC-004", type="operational", rule="Operational security controls", enforcement=BLOCK),
        ),
        compliance=(
            Rule(id="CMP-003", type="sla", rule="SLA compliance monitoring", enforcement=BLOCK),
        ),
        standards=(
            Rule(id="STD-003", type="operational", rule="Operational excellence standards", enforcement=BLOCK),
        ),
        cost=(
            Rule(id="CST-002", type="optimization", rule="Cost optimization automation", enforcement=WARN),
        ),
    ),
    Phase.GOVERNANCE: ValidationRules(
        security=(
            Rule(id="SEC-005", type="comprehensive", rule="Comprehensive security framework", enforcement=BLOCK),
            Rule(id="SEC-006", type="classification", rule="Data classification enforcement", enforcement=BLOCK),
        ),
        compliance=(
            Rule(id="CMP-004", type="regulatory", rule="Regulatory compliance validation", enforcement=BLOCK),
            Rule(id="CMP-005", type="audit", rule="Audit trail requirements", enforcement=BLOCK),
        ),
        standards=(
            Rule(id="STD-004", type="governance", rule="Governance framework compliance", enforcement=BLOCK),
        ),
        cost=(
            Rule(id="CST-003", type="governance", rule="Cost governance policies", enforcement=BLOCK),
        ),
    ),
    Phase.INTENT_DRIVEN: ValidationRules(
        security=(
            Rule(id="SEC-007", type="ai", rule="AI security framework", enforcement=BLOCK),
        ),
        compliance=(
            Rule(id="CMP-006", type="ethics", rule="AI ethics compliance", enforcement=BLOCK),
        ),
        standards=(
            Rule(id="STD-005", type="ai", rule="AI governance standards", enforcement=BLOCK),
        ),
        cost=(
            Rule(id="CST-004", type="ai", rule="AI cost optimization", enforcement=WARN),
        ),
    ),
}


# --- Type keywords (type slug and spaced form are added automatically) ---

TYPE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    # Foundation
    "backend-service": ("backend", "service", "api", "rest", "server", "microservice", "endpoint", "graphql"),
    "frontend-app": ("frontend", "front-end", "ui", "web app", "website", "react", "vue", "angular", "spa"),
    "gitops-app": ("gitops", "argocd", "argo cd", "flux", "helm chart"),
    "catalog-registration": ("catalog", "registration", "register"),
    "library": ("library", "sdk", "package", "shared module"),
    "documentation": ("documentation", "docs", "techdocs", "guide", "handbook"),
    # Standardization
    "composite-service": ("composite", "service", "multi-component", "api", "backend"),
    "microservice-suite": ("microservices", "suite", "service mesh"),
    "deployment-pipeline": ("pipeline", "ci/cd", "deployment", "delivery"),
    "environment-config": ("environment", "environments", "configuration", "config"),
    "monitoring-setup": ("monitoring", "metrics", "observability"),
    # Operationalization
    "operational-automation": ("automation", "operational", "operations", "toil"),
    "scaling-template": ("scaling", "autoscaling", "auto-scaling", "scale"),
    "maintenance-workflow": ("maintenance", "patching", "upgrade"),
    "monitoring-dashboard": ("dashboard", "dashboards", "grafana"),
    "alerting-setup": ("alert", "alerts", "alerting", "on-call", "paging"),
    "backup-automation": ("backup", "backups", "restore", "disaster recovery"),
    # Governance
    "policy-enforced-service": ("policy", "policies", "service", "api", "policy enforcement"),
    "compliance-template": ("compliance", "regulatory", "sox", "hipaa", "gdpr"),
    "governance-workflow": ("governance workflow", "approval", "approvals", "workflow"),
    "audit-automation": ("audit", "audits", "auditing"),
    "risk-assessment": ("risk", "risks", "threat model"),
    # Intent-driven
    "intent-driven-composite": ("intent-driven", "composite", "end-to-end", "platform"),
    "adaptive-template": ("adaptive", "adapts", "template"),
    "self-optimizing-service": ("self-optimizing", "self-healing", "optimizing", "service"),
    "ai-powered-workflow": ("ai", "ai-powered", "llm", "machine learning", "ml", "workflow"),
    "intelligent-automation": ("intelligent", "autonomous", "automation"),
}


def _build_phase_table() -> Mapping[Phase, PhaseProfile]:
    specs = {
        Phase.FOUNDATION: dict(
            name="Foundation",
            description="Basic scaffolding and code generation for individual services",
            supported_types=(
                "backend-service", "frontend-app", "gitops-app",
                "catalog-registration", "library", "documentation",
            ),
            required_capabilities=(
                "basic code generation", "file structure creation", "template scaffolding",
            ),
            template_features=("single-service templates", "basic parameter validation"),
            supports_composites=False,
            dependencies=(),
            strong_phrases=(),
            keywords=(
                "basic", "simple", "scaffold", "starter", "prototype", "crud",
                "service", "api", "rest", "backend", "frontend", "database",
                "library", "documentation", "web app",
            ),
        ),
        Phase.STANDARDIZATION: dict(
            name="Standardization",
            description="Architectural patterns, composite templates and CI/CD",
            supported_types=(
                "composite-service", "microservice-suite", "deployment-pipeline",
                "environment-config", "monitoring-setup",
            ),
            required_capabilities=(
                "automated deployment", "environment management",
                "ci/cd integration", "composite template creation",
            ),
            template_features=("composite templates", "environment promotion", "standard pipelines"),
            supports_composites=True,
            dependencies=("docker", "kubernetes", "helm"),
            strong_phrases=("ci/cd pipeline", "golden path", "architectural standards"),
            keywords=(
                "standard", "standards", "standardized", "architecture", "pattern",
                "patterns", "composite", "ci/cd", "pipeline", "deployment",
                "environment", "environments", "microservices", "reusable",
            ),
        ),
        Phase.OPERATIONALIZATION: dict(
            name="Operationalization",
            description="Day-2 operations: monitoring, scaling and maintenance automation",
            supported_types=(
                "operational-automation", "scaling-template", "maintenance-workflow",
                "monitoring-dashboard", "alerting-setup", "backup-automation",
            ),
            required_capabilities=(
                "operational automation", "monitoring and alerting",
                "scaling capabilities", "maintenance automation",
            ),
            template_features=("operational runbooks", "auto-scaling", "slo tracking"),
            supports_composites=False,
            dependencies=("prometheus", "grafana", "elasticsearch"),
            strong_phrases=("auto-scaling", "autoscaling", "runbook", "disaster recovery", "on-call"),
            keywords=(
                "operational", "operations", "monitoring", "observability", "scaling",
                "alerting", "alerts", "backup", "maintenance", "sla", "slo",
                "dashboard", "incident", "reliability",
            ),
        ),
        Phase.GOVERNANCE: dict(
            name="Governance & Compliance",
            description="Policy enforcement, compliance automation and audit trails",
            supported_types=(
                "policy-enforced-service", "compliance-template", "governance-workflow",
                "audit-automation", "risk-assessment",
            ),
            required_capabilities=(
                "policy enforcement", "compliance automation",
                "risk management", "audit trail generation",
            ),
            template_features=("policy-as-code", "compliance frameworks", "audit logging"),
            supports_composites=True,
            dependencies=("opa", "falco", "vault"),
            strong_phrases=(
                "governance", "compliant", "policy enforcement", "compliance validation",
                "audit trail", "audit trails", "regulatory", "policy-as-code",
            ),
            keywords=(
                "governance", "compliance", "compliant", "policy", "policies", "audit",
                "security", "regulatory", "risk", "sox", "hipaa", "gdpr", "controls",
            ),
        ),
        Phase.INTENT_DRIVEN: dict(
            name="Intent-Driven",
            description="Adaptive, self-optimizing and AI-assisted platform capabilities",
            supported_types=(
                "intent-driven-composite", "adaptive-template", "self-optimizing-service",
                "ai-powered-workflow", "intelligent-automation",
            ),
            required_capabilities=(
                "intent-based automation", "adaptive systems",
                "self-optimization", "ai/ml integration",
            ),
            template_features=("intent processing", "adaptive configuration", "ai validation"),
            supports_composites=True,
            dependencies=("tensorflow", "pytorch", "langchain"),
            strong_phrases=(
                "intent-driven", "self-optimizing", "self-healing", "ai-powered",
                "machine learning", "adaptive",
            ),
            keywords=(
                "intent", "adaptive", "intelligent", "ai", "ml", "autonomous",
                "optimization", "learning", "predictive", "end-to-end",
            ),
        ),
    }

    missing = [p.value for p in Phase if p not in specs or p not in _OWN_RULES]
    if missing:
        raise RuntimeError(f"Phase table is missing entries for: {', '.join(missing)}")

    table: Dict[Phase, PhaseProfile] = {}
    inherited = ValidationRules()
    for phase in Phase:
        own = _OWN_RULES[phase]
        inherited = ValidationRules(
            security=inherited.security + own.security,
            compliance=inherited.compliance + own.compliance,
            standards=inherited.standards + own.standards,
            cost=inherited.cost + own.cost,
        )
        table[phase] = PhaseProfile(
            phase=phase,
            maturity=phase.maturity,
            validation_rules=inherited,
            **specs[phase],
        )
    return MappingProxyType(table)


PHASE_TABLE: Mapping[Phase, PhaseProfile] = _build_phase_table()

# Checked highest phase first.
_STRONG_ORDER: List[Phase] = sorted(Phase, key=lambda p: p.rank, reverse=True)


def _contains(text: str, phrase: str) -> bool:
    """Whole-word, case-insensitive phrase match (text already lowered)."""
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text) is not None


def _join_signals(signals: Union[str, Iterable[str]]) -> str:
    if isinstance(signals, str):
        return signals.lower()
    return " ".join(s for s in signals if s).lower()


def _coerce_phase(phase) -> Optional[Phase]:
    if isinstance(phase, Phase):
        return phase
    if isinstance(phase, MaturityLevel):
        return phase.phase
    try:
        return Phase(str(phase).upper())
    except ValueError:
        return None


def score_phases(signals: Union[str, Iterable[str]]) -> Dict[Phase, int]:
    """Distinct keyword hits per phase."""
    text = _join_signals(signals)
    return {
        phase: sum(1 for kw in profile.keywords if _contains(text, kw))
        for phase, profile in PHASE_TABLE.items()
    }


def classify(
    signals: Union[str, Iterable[str]],
    override: Optional[Union[Phase, MaturityLevel]] = None,
) -> Tuple[MaturityLevel, Phase]:
    """
    Classify text signals into a maturity level and phase.

    An override (Phase or MaturityLevel) bypasses inference entirely.
    """
    if override is not None:
        phase = _coerce_phase(override)
        if phase is not None:
            return phase.maturity, phase

    text = _join_signals(signals)
    if not text.strip():
        return MaturityLevel.L1, Phase.FOUNDATION

    for phase in _STRONG_ORDER:
        if any(_contains(text, p) for p in PHASE_TABLE[phase].strong_phrases):
            return phase.maturity, phase

    scores = score_phases(text)
    best = max(scores.values())
    if best == 0:
        return MaturityLevel.L1, Phase.FOUNDATION

    # Ties go to the higher phase.
    phase = max((p for p, s in scores.items() if s == best), key=lambda p: p.rank)
    return phase.maturity, phase


def get_phase_profile(phase: Phase) -> PhaseProfile:
    return PHASE_TABLE[phase]


def get_supported_types(phase) -> FrozenSet[str]:
    resolved = _coerce_phase(phase)
    if resolved is None:
        return frozenset()
    return frozenset(PHASE_TABLE[resolved].supported_types)


def is_type_supported(phase, artifact_type) -> bool:
    if not isinstance(artifact_type, str):
        return False
    return artifact_type in get_supported_types(phase)


def get_next_phase(phase: Phase) -> Optional[Phase]:
    """Successor phase, or None at INTENT_DRIVEN."""
    order = list(Phase)
    idx = order.index(phase)
    if idx + 1 < len(order):
        return order[idx + 1]
    return None


def _type_keywords(artifact_type: str) -> Tuple[str, ...]:
    return TYPE_KEYWORDS.get(artifact_type, ()) + (
        artifact_type, artifact_type.replace("-", " "),
    )


def resolve_artifact_type(
    phase: Phase,
    signals: Union[str, Iterable[str]],
) -> Optional[str]:
    """
    Pick the supported type of `phase` that best matches the signals.

    Falls back to the phase default when nothing matches. Returns None when
    the signals explicitly name a type that belongs only to other phases.
    """
    text = _join_signals(signals)
    profile = PHASE_TABLE[phase]

    best_type: Optional[str] = None
    best_score = 0
    for artifact_type in profile.supported_types:
        score = sum(1 for kw in _type_keywords(artifact_type) if _contains(text, kw))
        if score > best_score:
            best_type, best_score = artifact_type, score
    if best_type is not None:
        return best_type

    foreign = [
        t for t in TYPE_KEYWORDS
        if t not in profile.supported_types
        and (_contains(text, t) or _contains(text, t.replace("-", " ")))
    ]
    if foreign:
        return None
    return profile.supported_types[0]


def phase_for_type(artifact_type: str) -> Optional[Phase]:
    """Lowest phase that supports the given type."""
    for phase in Phase:
        if artifact_type in PHASE_TABLE[phase].supported_types:
            return phase
    return None
