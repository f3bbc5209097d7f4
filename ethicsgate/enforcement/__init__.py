"""Commit-time enforcement gate, compliance reports and exporters."""

from ethicsgate.enforcement.gate import (
    ChangedFile,
    Changeset,
    CommitViolation,
    EnforcementGate,
    GateResult,
    OverrideRecord,
    OverrideRejected,
)
from ethicsgate.enforcement.report import (
    ComplianceBadge,
    ComplianceReport,
    ReviewRequirement,
    StandardCheck,
    build_report,
    derive_badge,
)

__all__ = [
    "ChangedFile", "Changeset", "CommitViolation", "EnforcementGate", "GateResult",
    "OverrideRecord", "OverrideRejected",
    "ComplianceBadge", "ComplianceReport", "ReviewRequirement", "StandardCheck",
    "build_report", "derive_badge",
]
