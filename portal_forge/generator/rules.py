"""
Rule evaluation — checks merged ValidationRules against a rendered artifact.

Uses a rule registry that maps rule ids to concrete checks. A check returns
a violation detail, or None when the rule holds. Rules without a registered
check (e.g. organization-specific rules supplied on a spec) are carried on
the artifact for the portal to enforce and pass here.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from portal_forge.models.validation import (
    Enforcement,
    Rule,
    RuleCategory,
    RuleViolation,
    ValidationRules,
)

logger = logging.getLogger(__name__)


class RuleContext(BaseModel):
    """What a rule check can see of the artifact under construction."""

    name: str
    skeleton: Mapping[str, str]
    parameters: Dict[str, Any] = {}         # Parameter name -> default value
    actions: List[str] = []                 # Step actions, in order


_SECRET_NAMES = r"(?:password|passwd|secret|api[_-]?key|access[_-]?key|private[_-]?key|token)"
_SECRET_ASSIGNMENT = re.compile(
    r"(?i)\b\w*" + _SECRET_NAMES + r"\w*\b[ \t]*[:=][ \t]*[\"']?(?![\"'$<{])[^\s\"'$]{6,}"
)
_SECRET_PARAM = re.compile(r"(?i)" + _SECRET_NAMES)
_KEBAB = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def _check_no_hardcoded_secrets(ctx: RuleContext) -> Optional[str]:
    for path, content in ctx.skeleton.items():
        match = _SECRET_ASSIGNMENT.search(content)
        if match:
            return f"Possible hardcoded secret in {path}: '{match.group(0)[:40]}'"
    for key, value in ctx.parameters.items():
        if _SECRET_PARAM.search(key) and isinstance(value, str) and value:
            return f"Parameter '{key}' carries a literal secret default"
    return None


def _check_naming(ctx: RuleContext) -> Optional[str]:
    if not _KEBAB.match(ctx.name):
        return f"Name '{ctx.name}' is not lower-case kebab-case"
    return None


def _require_files(*paths: str) -> Callable[[RuleContext], Optional[str]]:
    def check(ctx: RuleContext) -> Optional[str]:
        missing = [p for p in paths if p not in ctx.skeleton]
        if missing:
            return f"Missing required file(s): {', '.join(missing)}"
        return None
    return check


def _require_content(path_prefix: str, needle: str, what: str) -> Callable[[RuleContext], Optional[str]]:
    def check(ctx: RuleContext) -> Optional[str]:
        for path, content in ctx.skeleton.items():
            if path.startswith(path_prefix) and needle in content:
                return None
        return f"No {what} found under {path_prefix}"
    return check


# Rule checks: map rule ids to evaluation functions.
RULE_CHECKS: Dict[str, Callable[[RuleContext], Optional[str]]] = {
    "SEC-001": _check_no_hardcoded_secrets,
    "CMP-001": _check_naming,
    "STD-001": _require_files("README.md", "catalog-info.yaml"),
    "SEC-002": _require_content(".github/workflows/", "security-scan", "security scanning job"),
    "SEC-003": _require_files("deploy/rbac.yaml"),
    "CMP-002": _require_content(".github/workflows/", "environment: production", "production approval gate"),
    "STD-002": _require_files("docs/architecture.md"),
    "CST-001": _require_content("deploy/", "limits:", "resource limits"),
    "SEC-004": _require_files("ops/security-controls.yaml"),
    "CMP-003": _require_files("ops/slo.yaml"),
    "STD-003": _require_files("ops/runbook.md"),
    "CST-002": _require_files("ops/cost-optimization.yaml"),
    "SEC-005": _require_files("policies/security.rego"),
    "SEC-006": _require_content("catalog-info.yaml", "data-classification", "data classification annotation"),
    "CMP-004": _require_files("compliance/frameworks.yaml"),
    "CMP-005": _require_files("policies/audit.yaml"),
    "STD-004": _require_files("GOVERNANCE.md"),
    "CST-003": _require_files("policies/cost.rego"),
    "SEC-007": _require_files("ai/guardrails.yaml"),
    "CMP-006": _require_files("ai/model-card.md"),
    "STD-005": _require_files("ai/governance.yaml"),
    "CST-004": _require_files("ai/budget.yaml"),
}


def merge_validation_rules(
    phase_rules: ValidationRules,
    spec_rules: ValidationRules,
) -> ValidationRules:
    """
    Phase rules first, then spec rules not already present.

    Spec rules are additive: one that reuses a phase rule id may raise its
    enforcement to BLOCK but can never lower a phase BLOCK to WARN.
    """
    merged: Dict[RuleCategory, List[Rule]] = {}
    for (category, phase_list), (_, spec_list) in zip(
        phase_rules.by_category(), spec_rules.by_category()
    ):
        rules = list(phase_list)
        index = {r.id: i for i, r in enumerate(rules) if r.id}
        for n, rule in enumerate(spec_list, start=1):
            if rule.id is None:
                rule = rule.model_copy(
                    update={"id": f"CUSTOM-{category.value.upper()}-{n:03d}"}
                )
            if rule.id in index:
                existing = rules[index[rule.id]]
                if rule.enforcement == Enforcement.BLOCK and existing.enforcement != Enforcement.BLOCK:
                    rules[index[rule.id]] = existing.model_copy(update={"enforcement": Enforcement.BLOCK})
                continue
            index[rule.id] = len(rules)
            rules.append(rule)
        merged[category] = rules

    return ValidationRules(
        security=tuple(merged[RuleCategory.SECURITY]),
        compliance=tuple(merged[RuleCategory.COMPLIANCE]),
        standards=tuple(merged[RuleCategory.STANDARDS]),
        cost=tuple(merged[RuleCategory.COST]),
    )


def evaluate_rules(rules: ValidationRules, ctx: RuleContext) -> List[RuleViolation]:
    """Run every registered check; return violations in rule order."""
    violations: List[RuleViolation] = []
    for category, category_rules in rules.by_category():
        for rule in category_rules:
            check_fn = RULE_CHECKS.get(rule.id or "")
            if check_fn is None:
                continue
            detail = check_fn(ctx)
            logger.debug("Rule %s on %s: %s", rule.id, ctx.name, detail or "ok")
            if detail:
                violations.append(RuleViolation(
                    rule_id=rule.id,
                    category=category,
                    enforcement=rule.enforcement,
                    rule=rule.rule,
                    detail=detail,
                ))
    return violations


def split_violations(
    violations: List[RuleViolation],
) -> Tuple[List[RuleViolation], List[RuleViolation]]:
    """(blocking, warnings)."""
    blocking = [v for v in violations if v.enforcement == Enforcement.BLOCK]
    warnings = [v for v in violations if v.enforcement != Enforcement.BLOCK]
    return blocking, warnings
