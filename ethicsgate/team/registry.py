"""
EthicsGate Actor Registry

In-memory registry of developer profiles and team contexts, owned by
whoever runs the pipeline and passed in explicitly. Profiles are
immutable; every update replaces the stored profile under the registry
lock and returns the new state.

Ethics scores only move down automatically (fixed delta per recorded
violation, floored at 0). The only way up is an explicit reset.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from ethicsgate.config.models import (
    ComplianceLevel,
    DeveloperRole,
    ExperienceLevel,
    Industry,
    TeamsDocument,
    ViolationTrend,
    format_validation_error,
)
from ethicsgate.models import Severity, clamp01
from ethicsgate.team.identity import CommitIdentity

logger = logging.getLogger(__name__)

DEFAULT_TEAM_ID = "default"
UNKNOWN_ACTOR_ID = "unknown"
UNKNOWN_TEAM_ID = "unknown"

ETHICS_DELTAS = {
    Severity.LOW: 0.01,
    Severity.MEDIUM: 0.03,
    Severity.HIGH: 0.07,
    Severity.CRITICAL: 0.15,
}


@dataclass(frozen=True)
class RolePermissions:
    can_ignore_warnings: bool
    can_modify_policies: bool
    requires_review: bool
    can_approve_violations: bool
    max_risk_threshold: float


@dataclass(frozen=True)
class RoleDefinition:
    role: DeveloperRole
    permissions: RolePermissions
    weight_modifier: float


def _role(role, ignore, modify, review, approve, max_risk, modifier) -> Tuple[DeveloperRole, RoleDefinition]:
    return role, RoleDefinition(
        role=role,
        permissions=RolePermissions(ignore, modify, review, approve, max_risk),
        weight_modifier=modifier,
    )


# role: ignore warnings, modify policies, requires review, approve violations, max risk, modifier
ROLE_DEFINITIONS: Dict[DeveloperRole, RoleDefinition] = dict([
    _role(DeveloperRole.JUNIOR, False, False, True, False, 0.5, 0.9),
    _role(DeveloperRole.MID, False, False, True, False, 0.7, 1.0),
    _role(DeveloperRole.SENIOR, True, False, False, True, 0.8, 1.1),
    _role(DeveloperRole.LEAD, True, True, False, True, 0.85, 1.2),
    _role(DeveloperRole.ARCHITECT, True, True, False, True, 0.85, 1.2),
    _role(DeveloperRole.SECURITY, True, True, False, True, 0.9, 1.3),
    _role(DeveloperRole.COMPLIANCE, False, True, False, True, 0.9, 1.3),
    _role(DeveloperRole.CONTRACTOR, False, False, True, False, 0.5, 1.2),
])

REVIEWER_ROLES = frozenset({DeveloperRole.SENIOR, DeveloperRole.LEAD, DeveloperRole.ARCHITECT})


@dataclass(frozen=True)
class DeveloperProfile:
    """A developer as seen by the severity adjustment stage."""
    id: str
    name: str = ""
    email: str = ""
    role: DeveloperRole = DeveloperRole.MID
    experience: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    team_id: str = DEFAULT_TEAM_ID
    ethics_score: float = 0.8
    violation_count: int = 0
    certifications: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "ethics_score", clamp01(self.ethics_score))

    @property
    def role_definition(self) -> RoleDefinition:
        return ROLE_DEFINITIONS[self.role]

    @property
    def permissions(self) -> RolePermissions:
        return self.role_definition.permissions

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "experience": self.experience.value,
            "team_id": self.team_id,
            "ethics_score": round(self.ethics_score, 4),
            "violation_count": self.violation_count,
        }


@dataclass(frozen=True)
class TeamContext:
    """Team or workspace context driving the team and industry multipliers."""
    id: str
    name: str = ""
    industry: Industry = Industry.ENTERPRISE
    compliance_level: ComplianceLevel = ComplianceLevel.STANDARD
    violation_trend: ViolationTrend = ViolationTrend.STABLE
    ethics_champion: Optional[str] = None


@dataclass
class TeamSummary:
    team_id: str
    member_count: int
    average_ethics_score: float
    total_violations: int
    risk_profile: str  # "Low", "Medium", "High"
    recommended_actions: List[str] = field(default_factory=list)


UNKNOWN_ACTOR = DeveloperProfile(
    id=UNKNOWN_ACTOR_ID,
    name="Unknown Developer",
    role=DeveloperRole.CONTRACTOR,
    experience=ExperienceLevel.NOVICE,
    team_id=UNKNOWN_TEAM_ID,
    ethics_score=0.5,
)


class ActorRegistry:
    """Thread-safe store of developer profiles and team contexts."""

    def __init__(self, default_team_id: str = DEFAULT_TEAM_ID):
        self._lock = threading.Lock()
        self._profiles: Dict[str, DeveloperProfile] = {}
        self._teams: Dict[str, TeamContext] = {}
        self.default_team_id = default_team_id

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ActorRegistry":
        """Build a registry seeded from a teams.yaml file."""
        registry = cls()
        registry.load_seed(path)
        return registry

    def load_seed(self, path: Union[str, Path]) -> None:
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        try:
            document = TeamsDocument.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"{path}: invalid teams file: {format_validation_error(e)}") from e

        for team in document.teams:
            self.register_team(TeamContext(
                id=team.id,
                name=team.name or team.id,
                industry=team.industry,
                compliance_level=team.compliance_level,
                violation_trend=team.violation_trend,
                ethics_champion=team.ethics_champion,
            ))
        for dev in document.developers:
            self.register_profile(DeveloperProfile(
                id=dev.id,
                name=dev.name,
                email=dev.email,
                role=dev.role,
                experience=dev.experience,
                team_id=dev.team_id,
                ethics_score=dev.ethics_score,
                certifications=tuple(dev.certifications),
            ))
        logger.debug(
            f"Seeded {len(document.teams)} team(s) and "
            f"{len(document.developers)} developer(s) from {path}"
        )

    # -- profiles -------------------------------------------------------

    def register_profile(self, profile: DeveloperProfile) -> None:
        with self._lock:
            self._profiles[profile.id] = profile

    def observe(self, profile: DeveloperProfile) -> DeveloperProfile:
        """Register a host-supplied profile on first sight; an existing entry is kept."""
        with self._lock:
            return self._profiles.setdefault(profile.id, profile)

    def get_profile(self, actor_id: str) -> Optional[DeveloperProfile]:
        with self._lock:
            return self._profiles.get(actor_id)

    def profiles(self) -> List[DeveloperProfile]:
        with self._lock:
            return list(self._profiles.values())

    def resolve_actor(self, identity: Optional[CommitIdentity]) -> DeveloperProfile:
        """
        Profile for a commit identity.

        Known actors are matched by id or email. A new identity gets a
        default mid-level profile on first observation; no identity at all
        gets the conservative unknown-actor profile.
        """
        with self._lock:
            if identity is None or not identity.key:
                return self._profiles.setdefault(UNKNOWN_ACTOR_ID, UNKNOWN_ACTOR)

            key = identity.key
            profile = self._profiles.get(key)
            if profile is None:
                email = identity.author_email.strip().lower()
                profile = next(
                    (p for p in self._profiles.values() if email and p.email.lower() == email),
                    None,
                )
            if profile is None:
                profile = DeveloperProfile(
                    id=key,
                    name=identity.author_name,
                    email=identity.author_email,
                    team_id=self.default_team_id,
                )
                self._profiles[key] = profile
                logger.debug(f"Created default profile for {identity.author_name or key}")
            return profile

    def record_violation(self, actor_id: str, severity: Severity) -> DeveloperProfile:
        """
        Apply one recorded violation to an actor and return the new profile.

        The score drops by the severity's fixed delta, never below 0, and the
        violation counter increments. Raises KeyError for unknown actors.
        """
        severity = Severity(severity)
        with self._lock:
            current = self._profiles[actor_id]
            updated = replace(
                current,
                ethics_score=max(0.0, current.ethics_score - ETHICS_DELTAS[severity]),
                violation_count=current.violation_count + 1,
            )
            self._profiles[actor_id] = updated
        return updated

    def reset_ethics_score(self, actor_id: str, score: float = 1.0) -> DeveloperProfile:
        """Explicit external reset; the only operation that can raise a score."""
        with self._lock:
            updated = replace(self._profiles[actor_id], ethics_score=clamp01(score))
            self._profiles[actor_id] = updated
        logger.info(f"Ethics score for {actor_id} reset to {updated.ethics_score:.2f}")
        return updated

    # -- teams ----------------------------------------------------------

    def register_team(self, team: TeamContext) -> None:
        with self._lock:
            self._teams[team.id] = team

    def get_team(self, team_id: str) -> Optional[TeamContext]:
        with self._lock:
            return self._teams.get(team_id)

    def team_context(self, team_id: Optional[str] = None) -> TeamContext:
        """Team for an id, created with enterprise/standard/stable defaults on first lookup."""
        team_id = team_id or self.default_team_id
        with self._lock:
            team = self._teams.get(team_id)
            if team is None:
                team = TeamContext(id=team_id, name=team_id)
                self._teams[team_id] = team
            return team

    def team_members(self, team_id: str) -> List[DeveloperProfile]:
        with self._lock:
            return [p for p in self._profiles.values() if p.team_id == team_id]

    def team_summary(self, team_id: str) -> TeamSummary:
        members = self.team_members(team_id)
        count = len(members)
        average = sum(p.ethics_score for p in members) / count if count else 0.0
        total = sum(p.violation_count for p in members)

        if average < 0.6 or total > count * 5:
            risk_profile = "High"
        elif average < 0.8 or total > count * 2:
            risk_profile = "Medium"
        else:
            risk_profile = "Low"

        actions: List[str] = []
        if average < 0.7:
            actions.append("Schedule team ethics training")
        if total > count * 3:
            actions.append("Implement additional code review requirements")
        if any(p.role == DeveloperRole.CONTRACTOR and p.ethics_score < 0.6 for p in members):
            actions.append("Provide contractor-specific ethics orientation")

        return TeamSummary(
            team_id=team_id,
            member_count=count,
            average_ethics_score=average,
            total_violations=total,
            risk_profile=risk_profile,
            recommended_actions=actions,
        )
