"""Validation rules attached to templates, and validation results."""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class Enforcement(str, Enum):
    WARN = "warn"    # Reported as a finding; generation proceeds.
    BLOCK = "block"  # Violation aborts generation.


class RuleCategory(str, Enum):
    SECURITY = "security"
    COMPLIANCE = "compliance"
    STANDARDS = "standards"
    COST = "cost"


class Rule(BaseModel):
    """A single validation rule. `id` keys the check in the rule registry."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None                # e.g., "SEC-001"; assigned on merge if absent
    type: str                               # e.g., "baseline", "access", "audit"
    rule: str                               # Human-readable statement
    enforcement: Enforcement = Enforcement.WARN


class ValidationRules(BaseModel):
    """Rules grouped by category."""

    model_config = ConfigDict(frozen=True)

    security: Tuple[Rule, ...] = ()
    compliance: Tuple[Rule, ...] = ()
    standards: Tuple[Rule, ...] = ()
    cost: Tuple[Rule, ...] = ()

    def by_category(self) -> List[Tuple[RuleCategory, Tuple[Rule, ...]]]:
        return [
            (RuleCategory.SECURITY, self.security),
            (RuleCategory.COMPLIANCE, self.compliance),
            (RuleCategory.STANDARDS, self.standards),
            (RuleCategory.COST, self.cost),
        ]

    def all_rules(self) -> List[Rule]:
        return [r for _, rules in self.by_category() for r in rules]

    def blocking_rules(self) -> List[Rule]:
        return [r for r in self.all_rules() if r.enforcement == Enforcement.BLOCK]

    def rule_ids(self) -> List[str]:
        return [r.id for r in self.all_rules() if r.id]


class RuleViolation(BaseModel):
    """A rule that did not hold against a rendered artifact."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    category: RuleCategory
    enforcement: Enforcement
    rule: str
    detail: str


class ValidationIssue(BaseModel):
    """Machine-readable code plus human-readable message."""

    model_config = ConfigDict(frozen=True)

    code: str                               # e.g., "NO_SUPPORTED_TYPE"
    message: str
    field: Optional[str] = None             # Missing field the issue refers to


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    @classmethod
    def from_issues(
        cls,
        errors: List[ValidationIssue],
        warnings: List[ValidationIssue],
    ) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors, warnings=warnings)

    def missing_fields(self) -> List[str]:
        """Fields named by warnings, in order, without duplicates."""
        seen: List[str] = []
        for w in self.warnings:
            if w.field and w.field not in seen:
                seen.append(w.field)
        return seen
