"""
EthicsGate Remediation Engine

Builds ranked fix candidates for an adjusted violation from three sources:

1. Rule-based transforms keyed by category (templates.py)
2. Optional LLM-assisted alternatives (ethicsgate.llm), bounded by a timeout
3. Manual guidance for discrimination, surveillance and misuse (guidance.py)

Every code-bearing candidate is re-scanned with the same rules used for
detection; a candidate that trips any enabled rule is rejected and never
returned. Survivors are ranked by risk_reduction x confidence x
compliance_score, with manual guidance always last.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ethicsgate.detection.catalogue import PatternCatalogue
from ethicsgate.detection.engine import DetectionEngine
from ethicsgate.detection.language import detect_language
from ethicsgate.llm.assistant import AssistProviderError, RemediationAssistant
from ethicsgate.models import AnalysisContext, Category, clamp01
from ethicsgate.remediation.guidance import (
    GUIDANCE_CONFIDENCE,
    GUIDANCE_EFFORT,
    GUIDANCE_RISK_REDUCTION,
    guidance_for,
)
from ethicsgate.remediation.templates import template_for
from ethicsgate.team.adjustment import AdjustedViolation

logger = logging.getLogger(__name__)

# Each tripped rule costs a candidate this fraction of the rule weight
COMPLIANCE_PENALTY = 0.1


class SuggestionSource(str, Enum):
    RULE_BASED = "rule_based"
    ASSISTED = "assisted"
    MANUAL_GUIDANCE = "manual_guidance"


@dataclass(frozen=True)
class PolicyComplianceCheck:
    """Result of re-scanning a candidate against the active rules."""
    compliant: bool
    applicable_rules: Tuple[str, ...] = ()
    potential_new_violations: Tuple[str, ...] = ()
    compliance_score: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compliant": self.compliant,
            "applicable_rules": list(self.applicable_rules),
            "potential_new_violations": list(self.potential_new_violations),
            "compliance_score": round(self.compliance_score, 4),
        }


@dataclass(frozen=True)
class RemediationSuggestion:
    id: str
    violation_id: str
    source: SuggestionSource
    confidence: float
    original_code: str
    suggested_code: Optional[str]
    explanation: str
    compliance_check: PolicyComplianceCheck
    risk_reduction: float
    effort: str

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp01(self.confidence))
        object.__setattr__(self, "risk_reduction", clamp01(self.risk_reduction))

    @property
    def rank_score(self) -> float:
        return self.risk_reduction * self.confidence * self.compliance_check.compliance_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "violation_id": self.violation_id,
            "source": self.source.value,
            "confidence": round(self.confidence, 4),
            "original_code": self.original_code,
            "suggested_code": self.suggested_code,
            "explanation": self.explanation,
            "compliance_check": self.compliance_check.to_dict(),
            "risk_reduction": round(self.risk_reduction, 4),
            "effort": self.effort,
        }


@dataclass
class RemediationResult:
    """Ranked suggestions plus the candidates that were dropped and why."""
    violation_id: str
    suggestions: List[RemediationSuggestion] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)
    assist_error: Optional[str] = None

    @property
    def best(self) -> Optional[RemediationSuggestion]:
        return self.suggestions[0] if self.suggestions else None


class RemediationEngine:
    """Generates, validates and ranks remediation candidates."""

    def __init__(
        self,
        policy=None,
        assistant: Optional[RemediationAssistant] = None,
        catalogue: Optional[PatternCatalogue] = None,
    ):
        if catalogue is None:
            catalogue = PatternCatalogue.load_builtin()
            if policy is not None:
                catalogue = catalogue.combined_with(policy.catalogue())
        self._detector = DetectionEngine(catalogue)
        self.assistant = assistant

    def check_compliance(
        self,
        code: str,
        category: Category,
        file_name: str = "candidate",
        language: str = "unknown",
    ) -> PolicyComplianceCheck:
        """Re-scan candidate code with every enabled rule."""
        context = AnalysisContext(content=code, file_name=file_name, language=language)
        tripped = self._detector.matching_rules(context)
        tripped_ids = tuple(r.id for r in tripped)
        category = Category(category)
        applicable = tuple(
            r.id for r in self._detector.catalogue.enabled_rules()
            if r.category == category and r.id not in tripped_ids
        )
        score = 1.0 - sum(r.weight * COMPLIANCE_PENALTY for r in tripped)
        return PolicyComplianceCheck(
            compliant=not tripped,
            applicable_rules=applicable,
            potential_new_violations=tripped_ids,
            compliance_score=clamp01(score),
        )

    def suggest(
        self,
        violation: AdjustedViolation,
        context: Optional[AnalysisContext] = None,
    ) -> RemediationResult:
        """Ranked remediation candidates for one adjusted violation."""
        file_name = violation.file_path or (context.file_name if context else "candidate")
        language = context.language if context else detect_language(file_name)
        original = violation.snippet
        result = RemediationResult(violation_id=violation.id)

        candidates: List[RemediationSuggestion] = []

        template = template_for(violation.category)
        if template is not None:
            fixed = template.apply(original, language)
            if fixed is not None:
                candidates.append(self._code_candidate(
                    f"rule-{template.id}-{violation.id}", violation, SuggestionSource.RULE_BASED,
                    original, fixed, template.explanation, template.confidence,
                    template.risk_reduction, template.effort, file_name, language,
                ))

        candidates.extend(self._assisted_candidates(violation, context, file_name, language, result))

        accepted: List[RemediationSuggestion] = []
        for candidate in candidates:
            if candidate.compliance_check.compliant:
                accepted.append(candidate)
                continue
            reason = (
                "candidate trips rule(s): "
                + ", ".join(candidate.compliance_check.potential_new_violations)
            )
            logger.debug(f"Rejected remediation {candidate.id}: {reason}")
            result.rejected.append((candidate.id, reason))

        accepted.sort(key=lambda s: (-s.rank_score, s.id))
        result.suggestions.extend(accepted)

        text = guidance_for(violation.category)
        if text is not None:
            result.suggestions.append(RemediationSuggestion(
                id=f"guidance-{violation.category.value}-{violation.id}",
                violation_id=violation.id,
                source=SuggestionSource.MANUAL_GUIDANCE,
                confidence=GUIDANCE_CONFIDENCE,
                original_code=original,
                suggested_code=None,
                explanation=text,
                compliance_check=PolicyComplianceCheck(compliant=False, compliance_score=0.0),
                risk_reduction=GUIDANCE_RISK_REDUCTION,
                effort=GUIDANCE_EFFORT,
            ))
        return result

    def _code_candidate(
        self,
        candidate_id: str,
        violation: AdjustedViolation,
        source: SuggestionSource,
        original: str,
        fixed: str,
        explanation: str,
        confidence: float,
        risk_reduction: float,
        effort: str,
        file_name: str,
        language: str,
    ) -> RemediationSuggestion:
        return RemediationSuggestion(
            id=candidate_id,
            violation_id=violation.id,
            source=source,
            confidence=confidence,
            original_code=original,
            suggested_code=fixed,
            explanation=explanation,
            compliance_check=self.check_compliance(fixed, violation.category, file_name, language),
            risk_reduction=risk_reduction,
            effort=effort,
        )

    def _assisted_candidates(
        self,
        violation: AdjustedViolation,
        context: Optional[AnalysisContext],
        file_name: str,
        language: str,
        result: RemediationResult,
    ) -> List[RemediationSuggestion]:
        if self.assistant is None or not self.assistant.is_enabled():
            return []

        code = violation.snippet
        if context is not None:
            code = _surrounding_lines(context.content, violation.line) or code
        try:
            response = self.assistant.analyze(
                code, violation.violation, {"language": language, "file": file_name}
            )
        except AssistProviderError as e:
            kind = "timed out" if e.is_timeout else "failed"
            logger.warning(f"Assisted remediation {kind} for {violation.id}: {e}")
            result.assist_error = str(e)
            return []
        except Exception as e:
            logger.warning(f"Assisted remediation failed unexpectedly for {violation.id}: {e}")
            result.assist_error = f"unexpected error: {e}"
            return []

        return [
            self._code_candidate(
                f"assist-{index}-{violation.id}", violation, SuggestionSource.ASSISTED,
                violation.snippet, s.code, s.explanation, s.confidence,
                s.risk_reduction, s.effort, file_name, language,
            )
            for index, s in enumerate(response.suggestions, 1)
        ]


def _surrounding_lines(content: str, line: int, radius: int = 3) -> str:
    lines = content.splitlines()
    if not lines or line < 1:
        return ""
    start = max(0, line - 1 - radius)
    return "\n".join(lines[start:line + radius])
