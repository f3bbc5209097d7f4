"""
EthicsGate Pattern Catalogue

An immutable, ordered set of detection rules. The built-in catalogue ships
as patterns.yaml; policies contribute additional rules. Rule ids are
unique within a catalogue and, when catalogues are combined, the first
occurrence of an id wins.
"""

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from ethicsgate.config import PATTERNS_FILE
from ethicsgate.config.models import (
    PatternCatalogueDocument,
    RuleDefinition,
    format_validation_error,
)
from ethicsgate.detection.matcher import Matcher, PatternSyntaxError, RegexMatcher
from ethicsgate.models import Category, Rule

logger = logging.getLogger(__name__)

__all__ = [
    "Matcher", "PatternSyntaxError", "PatternCatalogue", "build_rule",
]


def build_rule(definition: RuleDefinition, source: str = "builtin") -> Rule:
    """Compile a validated rule definition into an immutable Rule."""
    return Rule(
        id=definition.id,
        name=definition.name,
        category=definition.category,
        severity=definition.severity,
        pattern=definition.pattern,
        matcher=RegexMatcher(definition.pattern, definition.flags),
        flags=definition.flags,
        weight=definition.weight,
        context_dependent=definition.context_dependent,
        description=definition.custom_message or definition.description or definition.name,
        recommendation=definition.recommendation,
        exceptions=tuple(definition.exceptions),
        contexts=tuple(definition.contexts),
        enabled=definition.enabled,
        source=source,
    )


class PatternCatalogue:
    """Ordered, immutable collection of rules with unique ids."""

    def __init__(self, rules: Iterable[Rule] = ()):
        seen = set()
        ordered: List[Rule] = []
        for rule in rules:
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id in catalogue: {rule.id}")
            seen.add(rule.id)
            ordered.append(rule)
        self._rules: Tuple[Rule, ...] = tuple(ordered)

    @classmethod
    def from_file(cls, path: Path, source: Optional[str] = None) -> "PatternCatalogue":
        """Load and validate a patterns.yaml document."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        try:
            document = PatternCatalogueDocument.model_validate(data)
        except ValidationError as e:
            raise PatternSyntaxError(
                f"{path}: invalid pattern catalogue: {format_validation_error(e)}"
            ) from e
        label = source or path.stem
        return cls(build_rule(d, source=label) for d in document.rules)

    @classmethod
    def load_builtin(cls) -> "PatternCatalogue":
        return _builtin_catalogue()

    @classmethod
    def from_policy(cls, policy) -> "PatternCatalogue":
        """Catalogue of the rules a policy declares."""
        return cls(policy.rules)

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def enabled_rules(self) -> Tuple[Rule, ...]:
        return tuple(r for r in self._rules if r.enabled)

    def by_category(self, category: Category) -> Tuple[Rule, ...]:
        category = Category(category)
        return tuple(r for r in self._rules if r.category == category)

    def get(self, rule_id: str) -> Optional[Rule]:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def combined_with(self, other: "PatternCatalogue") -> "PatternCatalogue":
        """Union of two catalogues; on duplicate ids this catalogue's rule wins."""
        ids = {r.id for r in self._rules}
        extra = [r for r in other.rules if r.id not in ids]
        return PatternCatalogue(self._rules + tuple(extra))

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return any(r.id == rule_id for r in self._rules)

    def __repr__(self) -> str:
        return f"PatternCatalogue({len(self._rules)} rules)"


_BUILTIN: Optional[PatternCatalogue] = None


def _builtin_catalogue() -> PatternCatalogue:
    global _BUILTIN
    if _BUILTIN is None:
        _BUILTIN = PatternCatalogue.from_file(PATTERNS_FILE, source="builtin")
        logger.debug(f"Loaded {len(_BUILTIN)} built-in rules from {PATTERNS_FILE}")
    return _BUILTIN
