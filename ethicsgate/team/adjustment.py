"""
EthicsGate Severity Adjustment

Re-weights detected violations by who wrote the code and where it lives.
Five independent multipliers (role, experience, team compliance level,
historical ethics performance, industry) combine multiplicatively; the
original severity value (1..4) times the composite is rounded and clamped
back into 1..4.

Adjustment itself is pure. Ethics score updates happen only through
``record`` so scans can run without touching the registry.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ethicsgate.config.models import (
    ComplianceLevel,
    DeveloperRole,
    ExperienceLevel,
    Industry,
    ViolationTrend,
)
from ethicsgate.detection.engine import overall_score
from ethicsgate.models import Category, RiskMetrics, Severity, Violation
from ethicsgate.team.identity import IdentityProvider
from ethicsgate.team.registry import (
    REVIEWER_ROLES,
    ActorRegistry,
    DeveloperProfile,
    TeamContext,
)

logger = logging.getLogger(__name__)

EXPERIENCE_MULTIPLIERS = {
    ExperienceLevel.NOVICE: 0.7,
    ExperienceLevel.INTERMEDIATE: 0.9,
    ExperienceLevel.ADVANCED: 1.1,
    ExperienceLevel.EXPERT: 1.3,
}

COMPLIANCE_MULTIPLIERS = {
    ComplianceLevel.STANDARD: 1.0,
    ComplianceLevel.HIGH: 1.3,
    ComplianceLevel.CRITICAL: 1.6,
}

LOW_ETHICS_THRESHOLD = 0.8
REVIEW_ETHICS_THRESHOLD = 0.6

# Team-wide metric scaling
TEAM_COMPLIANCE_ADJUSTMENT = {
    ComplianceLevel.STANDARD: 1.0,
    ComplianceLevel.HIGH: 1.2,
    ComplianceLevel.CRITICAL: 1.4,
}
TEAM_TREND_ADJUSTMENT = {
    ViolationTrend.IMPROVING: 0.9,
    ViolationTrend.STABLE: 1.0,
    ViolationTrend.CONCERNING: 1.3,
}
TEAM_CATEGORY_BIAS = {
    Category.DISCRIMINATION: 1.1,
    Category.MISUSE: 1.2,
}


def industry_multiplier(industry: Industry, category: Category) -> float:
    if industry in (Industry.FINANCIAL, Industry.HEALTHCARE):
        return 1.4
    if industry == Industry.EDUCATION:
        return 1.2
    if industry == Industry.SOCIAL and category in (Category.DISCRIMINATION, Category.MANIPULATION):
        return 1.5
    return 1.0


@dataclass(frozen=True)
class WeightingFactors:
    role: float
    experience: float
    team_compliance: float
    historical: float
    industry: float

    @property
    def composite(self) -> float:
        return self.role * self.experience * self.team_compliance * self.historical * self.industry

    def to_dict(self) -> Dict[str, float]:
        return {
            "role": self.role,
            "experience": self.experience,
            "team_compliance": self.team_compliance,
            "historical": self.historical,
            "industry": self.industry,
            "composite": round(self.composite, 4),
        }


@dataclass(frozen=True)
class AdjustedViolation:
    """A violation re-weighted for its author and team."""
    violation: Violation
    original_severity: Severity
    adjusted_severity: Severity
    weighting_factors: WeightingFactors
    requires_review: bool
    actor_id: str
    adjustment_reason: str = ""
    assigned_reviewer: Optional[str] = None

    @property
    def id(self) -> str:
        return self.violation.id

    @property
    def rule_id(self) -> str:
        return self.violation.rule_id

    @property
    def category(self) -> Category:
        return self.violation.category

    @property
    def file_path(self) -> str:
        return self.violation.file_path

    @property
    def line(self) -> int:
        return self.violation.line

    @property
    def column(self) -> int:
        return self.violation.column

    @property
    def message(self) -> str:
        return self.violation.message

    @property
    def snippet(self) -> str:
        return self.violation.snippet

    @property
    def recommendation(self) -> str:
        return self.violation.recommendation

    @property
    def confidence(self) -> float:
        return self.violation.confidence

    @property
    def sort_key(self) -> Tuple[str, int, int, str]:
        return self.violation.sort_key

    def to_dict(self) -> Dict[str, Any]:
        data = self.violation.to_dict()
        data.update({
            "original_severity": self.original_severity.value,
            "adjusted_severity": self.adjusted_severity.value,
            "requires_review": self.requires_review,
            "assigned_reviewer": self.assigned_reviewer,
            "actor": self.actor_id,
            "adjustment_reason": self.adjustment_reason,
            "weighting_factors": self.weighting_factors.to_dict(),
        })
        return data


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SeverityAdjuster:
    """Applies actor and team weighting to detected violations."""

    def __init__(
        self,
        registry: ActorRegistry,
        identity_provider: Optional[IdentityProvider] = None,
    ):
        self.registry = registry
        self.identity_provider = identity_provider

    def resolve(
        self,
        workspace: Union[str, Path, None] = None,
        actor: Optional[DeveloperProfile] = None,
        team: Optional[TeamContext] = None,
    ) -> Tuple[DeveloperProfile, TeamContext]:
        """Actor and team for a workspace; unknown identity falls back to the unknown actor."""
        if actor is None:
            identity = None
            if self.identity_provider is not None:
                identity = self.identity_provider.latest_identity(workspace)
            actor = self.registry.resolve_actor(identity)
        else:
            self.registry.observe(actor)
        if team is None:
            team = self.registry.team_context(actor.team_id)
        return actor, team

    def weighting_factors(
        self, profile: DeveloperProfile, team: TeamContext, category: Category
    ) -> WeightingFactors:
        return WeightingFactors(
            role=profile.role_definition.weight_modifier,
            experience=EXPERIENCE_MULTIPLIERS[profile.experience],
            team_compliance=COMPLIANCE_MULTIPLIERS[team.compliance_level],
            historical=1.2 if profile.ethics_score < LOW_ETHICS_THRESHOLD else 0.9,
            industry=industry_multiplier(team.industry, Category(category)),
        )

    @staticmethod
    def adjusted_severity(severity: Severity, factors: WeightingFactors) -> Severity:
        return Severity.from_rank(round_half_up(Severity(severity).rank * factors.composite))

    @staticmethod
    def requires_review(profile: DeveloperProfile, adjusted: Severity) -> bool:
        if adjusted == Severity.CRITICAL:
            return True
        if profile.role == DeveloperRole.CONTRACTOR and adjusted == Severity.HIGH:
            return True
        if profile.ethics_score < REVIEW_ETHICS_THRESHOLD:
            return True
        return profile.permissions.requires_review

    def assign_reviewer(self, team: TeamContext, profile: DeveloperProfile) -> Optional[str]:
        """Ethics champion, else the best-scoring senior peer who can approve, else None."""
        if team.ethics_champion and team.ethics_champion != profile.id:
            return team.ethics_champion

        candidates = [
            p for p in self.registry.team_members(team.id)
            if p.id != profile.id
            and p.role in REVIEWER_ROLES
            and p.permissions.can_approve_violations
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda p: (-p.ethics_score, p.id))
        return candidates[0].id

    @staticmethod
    def adjustment_reason(factors: WeightingFactors, profile: DeveloperProfile) -> str:
        reasons: List[str] = []
        if factors.role > 1.1:
            reasons.append(f"Increased severity due to {profile.role.value} role responsibilities")
        elif factors.role < 0.9:
            reasons.append(f"Reduced severity considering {profile.role.value} role context")

        if factors.experience > 1.1:
            reasons.append(f"Higher expectations for {profile.experience.value} developer")
        elif factors.experience < 0.9:
            reasons.append(f"Adjusted for developer experience level ({profile.experience.value})")

        if factors.industry > 1.2:
            reasons.append("Elevated due to industry compliance requirements")
        if factors.historical > 1.1:
            reasons.append("Increased scrutiny due to previous ethics concerns")

        return "; ".join(reasons) or "Standard team-based adjustment"

    def adjust_violation(
        self, violation: Violation, profile: DeveloperProfile, team: TeamContext
    ) -> AdjustedViolation:
        factors = self.weighting_factors(profile, team, violation.category)
        adjusted = self.adjusted_severity(violation.severity, factors)
        review = self.requires_review(profile, adjusted)
        return AdjustedViolation(
            violation=violation,
            original_severity=violation.severity,
            adjusted_severity=adjusted,
            weighting_factors=factors,
            requires_review=review,
            actor_id=profile.id,
            adjustment_reason=self.adjustment_reason(factors, profile),
            assigned_reviewer=self.assign_reviewer(team, profile) if review else None,
        )

    def adjust(
        self,
        violations: Iterable[Violation],
        workspace: Union[str, Path, None] = None,
        actor: Optional[DeveloperProfile] = None,
        team: Optional[TeamContext] = None,
    ) -> List[AdjustedViolation]:
        """Adjust every violation for the resolved actor. Does not touch ethics scores."""
        profile, team = self.resolve(workspace, actor, team)
        return [self.adjust_violation(v, profile, team) for v in violations]

    def record(self, adjusted: Iterable[AdjustedViolation]) -> Optional[DeveloperProfile]:
        """Apply ethics score decrements, once per violation. Returns the last actor state."""
        latest = None
        for av in adjusted:
            latest = self.registry.record_violation(av.actor_id, av.adjusted_severity)
        if latest is not None:
            logger.debug(
                f"Ethics score for {latest.id} now {latest.ethics_score:.2f} "
                f"after {latest.violation_count} violation(s)"
            )
        return latest

    @staticmethod
    def team_risk_adjustment(metrics: RiskMetrics, team: TeamContext) -> RiskMetrics:
        """Scale category risks for the team's compliance level and violation trend."""
        base = TEAM_COMPLIANCE_ADJUSTMENT[team.compliance_level] * TEAM_TREND_ADJUSTMENT[team.violation_trend]
        risks = {
            c: min(1.0, metrics.get(c) * base * TEAM_CATEGORY_BIAS.get(c, 1.0))
            for c in Category
        }
        return RiskMetrics(
            surveillance=risks[Category.SURVEILLANCE],
            discrimination=risks[Category.DISCRIMINATION],
            privacy=risks[Category.PRIVACY],
            misuse=risks[Category.MISUSE],
            manipulation=risks[Category.MANIPULATION],
            overall_score=overall_score(risks),
        )
