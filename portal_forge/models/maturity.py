"""Maturity levels and development phases — the two totally ordered scales."""

from enum import Enum


class MaturityLevel(str, Enum):
    """Capability maturity (L1-L5). Corresponds 1:1 with Phase."""
    L1 = "L1"  # Generation — basic scaffolding
    L2 = "L2"  # Standardization — architectural patterns, CI/CD
    L3 = "L3"  # Operationalization — monitoring, scaling, maintenance
    L4 = "L4"  # Governance — policy, compliance, audit
    L5 = "L5"  # Intent-driven — adaptive, self-optimizing

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self) + 1

    @property
    def phase(self) -> "Phase":
        return _PHASE_ORDER[self.rank - 1]


class Phase(str, Enum):
    """Development phase, used to scope template types and rules."""
    FOUNDATION = "FOUNDATION"
    STANDARDIZATION = "STANDARDIZATION"
    OPERATIONALIZATION = "OPERATIONALIZATION"
    GOVERNANCE = "GOVERNANCE"
    INTENT_DRIVEN = "INTENT_DRIVEN"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self) + 1

    @property
    def maturity(self) -> MaturityLevel:
        return _LEVEL_ORDER[self.rank - 1]

    @property
    def slug(self) -> str:
        """Lower-case hyphenated form used in artifact names."""
        return self.value.lower().replace("_", "-")


_LEVEL_ORDER = list(MaturityLevel)
_PHASE_ORDER = list(Phase)


def max_level(a: MaturityLevel, b: MaturityLevel) -> MaturityLevel:
    """Return the higher of two maturity levels."""
    return a if a.rank >= b.rank else b
