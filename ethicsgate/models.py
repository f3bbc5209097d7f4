"""
Core domain records shared by the detection pipeline.

Severities and enforcement modes are totally ordered string enums so they
round-trip through YAML and JSON unchanged. Every score, weight and
confidence field is clamped into [0, 1] on construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

if TYPE_CHECKING:
    from ethicsgate.detection.matcher import Matcher


def clamp01(value: float) -> float:
    """Clamp a score into the closed unit interval."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


class _RankedEnum(str, Enum):
    """String enum compared by declaration order instead of by text."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self) + 1

    def _check(self, other: Any) -> bool:
        return isinstance(other, type(self))

    def __lt__(self, other):
        if not self._check(other):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not self._check(other):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not self._check(other):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not self._check(other):
            return NotImplemented
        return self.rank >= other.rank

    def __hash__(self):
        return hash(self.value)

    def __str__(self) -> str:
        return self.value


class Severity(_RankedEnum):
    """Violation severity, ordered low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_rank(cls, rank: int) -> "Severity":
        members = list(cls)
        rank = max(1, min(len(members), int(rank)))
        return members[rank - 1]


class EnforcementMode(_RankedEnum):
    """Policy enforcement mode, ordered warn < error < block."""
    WARN = "warn"
    ERROR = "error"
    BLOCK = "block"


class Category(str, Enum):
    """Risk category a rule contributes to."""
    SURVEILLANCE = "surveillance"
    DISCRIMINATION = "discrimination"
    PRIVACY = "privacy"
    MISUSE = "misuse"
    MANIPULATION = "manipulation"

    def __str__(self) -> str:
        return self.value


# Contribution of each severity to category risk
SEVERITY_MULTIPLIERS = {
    Severity.LOW: 0.3,
    Severity.MEDIUM: 0.6,
    Severity.HIGH: 0.85,
    Severity.CRITICAL: 1.0,
}

# Weights for the overall score; discrimination and misuse dominate
CATEGORY_WEIGHTS = {
    Category.SURVEILLANCE: 0.15,
    Category.DISCRIMINATION: 0.35,
    Category.PRIVACY: 0.25,
    Category.MISUSE: 0.20,
    Category.MANIPULATION: 0.05,
}


@dataclass(frozen=True)
class Rule:
    """A single detection rule. Immutable once loaded."""
    id: str
    name: str
    category: Category
    severity: Severity
    pattern: str
    matcher: "Matcher" = field(compare=False, repr=False)
    flags: str = "gi"
    weight: float = 0.5
    context_dependent: bool = False
    description: str = ""
    recommendation: str = ""
    exceptions: Tuple[str, ...] = ()
    contexts: Tuple[str, ...] = ()
    enabled: bool = True
    source: str = "builtin"

    def __post_init__(self):
        object.__setattr__(self, "weight", clamp01(self.weight))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "severity": self.severity.value,
            "pattern": self.pattern,
            "flags": self.flags,
            "weight": self.weight,
            "enabled": self.enabled,
            "context_dependent": self.context_dependent,
            "description": self.description,
            "recommendation": self.recommendation,
        }
        if self.exceptions:
            data["exceptions"] = list(self.exceptions)
        if self.contexts:
            data["contexts"] = list(self.contexts)
        return data


@dataclass(frozen=True)
class AnalysisContext:
    """Input to a single-file scan."""
    content: str
    file_name: str
    language: str = "unknown"
    project_context: Optional[str] = None
    environment: Optional[str] = None


@dataclass(frozen=True)
class Violation:
    """One detected instance of a risk pattern at a specific location."""
    id: str
    rule_id: str
    category: Category
    severity: Severity
    line: int
    column: int
    message: str
    snippet: str
    recommendation: str
    confidence: float
    file_path: str = ""

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp01(self.confidence))

    @property
    def sort_key(self) -> Tuple[str, int, int, str]:
        return (self.file_path, self.line, self.column, self.rule_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "file": self.file_path,
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "snippet": self.snippet,
            "recommendation": self.recommendation,
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class RiskMetrics:
    """Per-category risk in [0, 1] plus the combined overall score."""
    surveillance: float = 0.0
    discrimination: float = 0.0
    privacy: float = 0.0
    misuse: float = 0.0
    manipulation: float = 0.0
    overall_score: float = 1.0

    def __post_init__(self):
        for name in ("surveillance", "discrimination", "privacy", "misuse",
                     "manipulation", "overall_score"):
            object.__setattr__(self, name, clamp01(getattr(self, name)))

    def get(self, category: Category) -> float:
        return getattr(self, Category(category).value)

    def risks(self) -> Dict[Category, float]:
        return {c: self.get(c) for c in Category}

    def to_dict(self) -> Dict[str, float]:
        data = {c.value: round(self.get(c), 6) for c in Category}
        data["overall_score"] = round(self.overall_score, 6)
        return data


@dataclass(frozen=True)
class AnalysisResult:
    """Metrics and violations for one scanned file."""
    context: AnalysisContext
    metrics: RiskMetrics
    violations: Tuple[Violation, ...] = ()

    @property
    def file_path(self) -> str:
        return self.context.file_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file_path,
            "language": self.context.language,
            "metrics": self.metrics.to_dict(),
            "violations": [v.to_dict() for v in self.violations],
        }
