"""
Pydantic models for EthicsGate configuration validation.

These models define the schema for policy documents (rule bundles with
thresholds and an enforcement mode), the built-in pattern catalogue
(patterns.yaml), the gate configuration (gate.yaml and its user/project
overlays) and optional team seed files. They provide:
- Type-safe loading with automatic validation
- Human-readable error messages for invalid documents
- Eager regex compilation so malformed rules fail at load time
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ethicsgate.detection.matcher import PatternSyntaxError, RegexMatcher
from ethicsgate.models import Category, EnforcementMode, Severity


# ============================================================================
# Enums
# ============================================================================


class DeveloperRole(str, Enum):
    """Roles a developer can hold within a team."""
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    LEAD = "lead"
    ARCHITECT = "architect"
    SECURITY = "security"
    COMPLIANCE = "compliance"
    CONTRACTOR = "contractor"


class ExperienceLevel(str, Enum):
    """Experience bracket used for the experience multiplier."""
    NOVICE = "novice"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class Industry(str, Enum):
    """Industry a team operates in."""
    FINANCIAL = "financial"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    SOCIAL = "social"
    ENTERPRISE = "enterprise"
    GAMING = "gaming"
    OTHER = "other"


class ComplianceLevel(str, Enum):
    """Regulatory pressure on a team."""
    STANDARD = "standard"
    HIGH = "high"
    CRITICAL = "critical"


class ViolationTrend(str, Enum):
    """Direction of a team's recent violation history."""
    IMPROVING = "improving"
    STABLE = "stable"
    CONCERNING = "concerning"


KNOWN_STANDARDS = ("GDPR", "CCPA", "SOX", "HIPAA", "PCI-DSS")

_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


# ============================================================================
# Rule and Policy Models
# ============================================================================


class RuleDefinition(BaseModel):
    """A single detection rule as written in YAML."""
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category: Category
    severity: Severity
    pattern: str = Field(min_length=1)
    flags: str = "gi"
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    enabled: bool = True
    context_dependent: bool = Field(default=False, alias="contextDependent")
    description: str = ""
    custom_message: Optional[str] = Field(default=None, alias="customMessage")
    recommendation: str = ""
    contexts: List[str] = Field(default_factory=list)
    exceptions: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid", "populate_by_name": True}

    @model_validator(mode="after")
    def validate_pattern(self) -> "RuleDefinition":
        try:
            RegexMatcher(self.pattern, self.flags)
        except PatternSyntaxError as e:
            raise ValueError(f"rule '{self.id}': {e}") from e
        return self


class ThresholdsDefinition(BaseModel):
    """Per-category thresholds plus the overall threshold, all in [0, 1]."""
    surveillance: float = Field(ge=0.0, le=1.0)
    discrimination: float = Field(ge=0.0, le=1.0)
    privacy: float = Field(ge=0.0, le=1.0)
    misuse: float = Field(ge=0.0, le=1.0)
    manipulation: float = Field(ge=0.0, le=1.0)
    overall: float = Field(ge=0.0, le=1.0)

    model_config = {"extra": "forbid"}


class EnforcementDefinition(BaseModel):
    """How strictly a policy is enforced."""
    mode: EnforcementMode = EnforcementMode.WARN
    auto_fix: bool = Field(default=False, alias="autoFix")
    notifications: bool = True
    audit_log: bool = Field(default=True, alias="auditLog")

    model_config = {"extra": "forbid", "populate_by_name": True}


class PolicyMetadataDefinition(BaseModel):
    """Free-form bookkeeping for a policy."""
    author: str = ""
    created: Optional[str] = None
    last_modified: Optional[str] = Field(default=None, alias="lastModified")
    compliance: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("created", "last_modified", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:
        """YAML parses bare ISO dates into datetime objects; keep them as text."""
        if v is not None and not isinstance(v, str):
            return v.isoformat() if hasattr(v, "isoformat") else str(v)
        return v


class PolicyDocument(BaseModel):
    """Root model for a policy YAML document."""
    name: str = Field(min_length=1)
    version: str
    description: str = ""
    enabled: bool = True
    rules: List[RuleDefinition] = Field(default_factory=list)
    thresholds: ThresholdsDefinition
    enforcement: EnforcementDefinition = Field(default_factory=EnforcementDefinition)
    metadata: PolicyMetadataDefinition = Field(default_factory=PolicyMetadataDefinition)

    model_config = {"extra": "forbid"}

    @field_validator("version", mode="before")
    @classmethod
    def validate_version(cls, v: Any) -> str:
        v = str(v)
        if not _VERSION_RE.match(v):
            raise ValueError(f"version '{v}' must be semantic (e.g. 1.0.0)")
        return v

    @model_validator(mode="after")
    def check_unique_ids(self) -> "PolicyDocument":
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate rule IDs: {dupes}")
        return self


class PatternCatalogueDocument(BaseModel):
    """Root model for the built-in patterns.yaml."""
    version: int
    rule_count: int = 0
    rules: List[RuleDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_rule_count(self) -> "PatternCatalogueDocument":
        actual = len(self.rules)
        if self.rule_count > 0 and actual != self.rule_count:
            raise ValueError(
                f"rule_count ({self.rule_count}) does not match "
                f"actual number of rules ({actual})"
            )
        return self

    @model_validator(mode="after")
    def check_unique_ids(self) -> "PatternCatalogueDocument":
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate rule IDs: {dupes}")
        return self


# ============================================================================
# Gate Configuration Models
# ============================================================================


class AssistConfig(BaseModel):
    """Configuration for LLM-assisted remediation."""
    enabled: bool = False
    provider: str = "auto"
    model: str = "auto"
    base_url: Optional[str] = None
    api_key_env: Optional[str] = None
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_tokens: int = Field(default=1024, gt=0)

    model_config = {"extra": "allow"}

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v not in ("auto", "anthropic", "openai", "fallback"):
            raise ValueError(f"unknown assist provider '{v}'")
        return v


class ReviewContacts(BaseModel):
    """Who review requirements are routed to."""
    ethics: str = "ethics-team@company.com"
    legal: str = "legal-team@company.com"

    model_config = {"extra": "allow"}


class GateConfig(BaseModel):
    """
    Root model for the enforcement gate configuration.

    Validates the merged configuration from builtin, user and project
    layers. Uses extra="allow" so newer keys do not break older installs.
    """
    enable_pre_commit: bool = True
    enable_pre_push: bool = False
    block_on_critical: bool = True
    require_review_for_high: bool = True
    allow_override: bool = False
    override_requires_approval: bool = True
    standards: List[str] = Field(default_factory=lambda: list(KNOWN_STANDARDS))
    policy_dir: Optional[str] = None
    teams_file: Optional[str] = None
    project_context: Optional[str] = None
    workers: int = Field(default=4, ge=1, le=64)
    include_patent_scan: bool = False
    review_contacts: ReviewContacts = Field(default_factory=ReviewContacts)
    assist: AssistConfig = Field(default_factory=AssistConfig)

    model_config = {"extra": "allow"}

    @field_validator("standards")
    @classmethod
    def validate_standards(cls, v: List[str]) -> List[str]:
        normalized = [s.upper() for s in v]
        unknown = [s for s in normalized if s not in KNOWN_STANDARDS]
        if unknown:
            raise ValueError(
                f"Unknown compliance standard(s): {unknown}. "
                f"Known: {', '.join(KNOWN_STANDARDS)}"
            )
        return normalized


# ============================================================================
# Team Seed Models
# ============================================================================


class DeveloperSeed(BaseModel):
    """A developer profile declared ahead of the first scan."""
    id: str = Field(min_length=1)
    name: str = ""
    email: str = ""
    role: DeveloperRole = DeveloperRole.MID
    experience: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    team_id: str = "default"
    ethics_score: float = Field(default=0.8, ge=0.0, le=1.0)
    certifications: List[str] = Field(default_factory=list)


class TeamSeed(BaseModel):
    """A team declared ahead of the first scan."""
    id: str = Field(min_length=1)
    name: str = ""
    industry: Industry = Industry.ENTERPRISE
    compliance_level: ComplianceLevel = ComplianceLevel.STANDARD
    violation_trend: ViolationTrend = ViolationTrend.STABLE
    ethics_champion: Optional[str] = None


class TeamsDocument(BaseModel):
    """Root model for a teams.yaml seed file."""
    teams: List[TeamSeed] = Field(default_factory=list)
    developers: List[DeveloperSeed] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_ids(self) -> "TeamsDocument":
        for label, ids in (("team", [t.id for t in self.teams]),
                           ("developer", [d.id for d in self.developers])):
            if len(ids) != len(set(ids)):
                dupes = sorted({i for i in ids if ids.count(i) > 1})
                raise ValueError(f"Duplicate {label} IDs: {dupes}")
        return self


def format_validation_error(error: Exception) -> str:
    """Render a pydantic ValidationError as one line per problem."""
    errors = getattr(error, "errors", None)
    if not callable(errors):
        return str(error)
    lines: List[str] = []
    for item in errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        lines.append(f"{loc}: {item.get('msg', 'invalid value')}")
    return "; ".join(lines)


def dump_rule(rule: RuleDefinition) -> Dict[str, Any]:
    """Serialize a rule definition back into its YAML form."""
    return rule.model_dump(mode="json", exclude_none=True)
