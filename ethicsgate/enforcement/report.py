"""
EthicsGate Compliance Report

Aggregates adjusted violations from one gate invocation into a
ComplianceReport and derives the status badge from it. Everything here is
a pure function of its inputs; the timestamp can be supplied so reports are
reproducible.
"""

import hashlib
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ethicsgate.config.models import KNOWN_STANDARDS, ReviewContacts
from ethicsgate.models import Category, Severity
from ethicsgate.team.adjustment import AdjustedViolation

VIOLATION_PENALTY = 5
CRITICAL_PENALTY = 20

ETHICS_REVIEW_HOURS = 24
LEGAL_REVIEW_HOURS = 48
TRAINING_THRESHOLD = 10

STANDARD_CATEGORIES: Dict[str, Tuple[Category, ...]] = {
    "GDPR": (Category.PRIVACY, Category.SURVEILLANCE, Category.DISCRIMINATION),
    "CCPA": (Category.PRIVACY, Category.SURVEILLANCE, Category.DISCRIMINATION),
    "SOX": (Category.MISUSE, Category.MANIPULATION),
    "HIPAA": (Category.PRIVACY,),
    "PCI-DSS": (Category.MISUSE, Category.PRIVACY),
}

CATEGORY_RECOMMENDATIONS: Dict[Category, Tuple[str, ...]] = {
    Category.DISCRIMINATION: (
        "Implement bias testing in your development process",
        "Review all conditional logic for potential discrimination",
        "Consult with legal team on discrimination compliance",
    ),
    Category.SURVEILLANCE: (
        "Implement explicit user consent mechanisms",
        "Review data collection practices for necessity",
        "Add privacy controls and user opt-out options",
    ),
    Category.PRIVACY: (
        "Implement data encryption for sensitive information",
        "Review data handling and storage practices",
        "Ensure compliance with privacy regulations",
    ),
    Category.MISUSE: (
        "Conduct security audit of authentication mechanisms",
        "Remove all hardcoded credentials and bypasses",
        "Implement proper access controls",
    ),
    Category.MANIPULATION: (
        "Review user interface for transparency",
        "Ensure all fees and charges are clearly disclosed",
        "Implement honest user experience patterns",
    ),
}

BADGE_COLORS = {
    "blocked": "#e74c3c",
    "failing": "#e67e22",
    "warning": "#f39c12",
    "passing": "#27ae60",
}


@dataclass(frozen=True)
class StandardCheck:
    standard: str
    compliant: bool
    categories: Tuple[Category, ...]
    violations: Tuple[str, ...]
    risk_level: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "standard": self.standard,
            "compliant": self.compliant,
            "categories": [c.value for c in self.categories],
            "violations": list(self.violations),
            "risk_level": self.risk_level.value,
        }


@dataclass(frozen=True)
class ReviewRequirement:
    type: str
    reviewer: str
    deadline: datetime
    mandatory: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "reviewer": self.reviewer,
            "deadline": self.deadline.isoformat(),
            "mandatory": self.mandatory,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ComplianceReport:
    id: str
    timestamp: datetime
    files_scanned: int
    violations_found: int
    critical_count: int
    compliance_score: int
    standard_checks: Tuple[StandardCheck, ...] = ()
    recommendations: Tuple[str, ...] = ()
    review_requirements: Tuple[ReviewRequirement, ...] = ()
    author: str = "unknown"
    commit: str = "unknown"
    skipped: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "commit": self.commit,
            "author": self.author,
            "files_scanned": self.files_scanned,
            "violations_found": self.violations_found,
            "critical_violations": self.critical_count,
            "compliance_score": self.compliance_score,
            "standard_checks": [c.to_dict() for c in self.standard_checks],
            "recommendations": list(self.recommendations),
            "review_requirements": [r.to_dict() for r in self.review_requirements],
            "skipped": [{"file": p, "reason": r} for p, r in self.skipped],
        }


@dataclass(frozen=True)
class ComplianceBadge:
    status: str
    score: int
    text: str
    color: str
    details: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "score": self.score,
            "text": self.text,
            "color": self.color,
            "details": list(self.details),
        }


def compliance_score(total: int, critical: int) -> int:
    return max(0, min(100, 100 - VIOLATION_PENALTY * total - CRITICAL_PENALTY * critical))


def standard_risk_level(violations: Sequence[AdjustedViolation]) -> Severity:
    """Risk level for one standard from the violations relevant to it."""
    if any(v.adjusted_severity == Severity.CRITICAL for v in violations):
        return Severity.CRITICAL
    if any(v.adjusted_severity == Severity.HIGH for v in violations) or len(violations) > 5:
        return Severity.HIGH
    if len(violations) > 2:
        return Severity.MEDIUM
    return Severity.LOW


def check_standards(
    violations: Sequence[AdjustedViolation],
    standards: Iterable[str] = KNOWN_STANDARDS,
) -> Tuple[StandardCheck, ...]:
    checks = []
    for standard in standards:
        categories = STANDARD_CATEGORIES.get(standard.upper(), ())
        relevant = [v for v in violations if v.category in categories]
        checks.append(StandardCheck(
            standard=standard.upper(),
            compliant=not relevant,
            categories=categories,
            violations=tuple(v.message for v in relevant),
            risk_level=standard_risk_level(relevant),
        ))
    return tuple(checks)


def build_recommendations(violations: Sequence[AdjustedViolation]) -> Tuple[str, ...]:
    present = {v.category for v in violations}
    recommendations: List[str] = []
    for category in Category:
        if category in present:
            recommendations.extend(CATEGORY_RECOMMENDATIONS[category])

    if len(violations) > TRAINING_THRESHOLD:
        recommendations.append("Consider comprehensive ethics training for the development team")
    if any(v.adjusted_severity == Severity.CRITICAL for v in violations):
        recommendations.append("Immediate review and remediation of critical violations required")
    # Categories can share advice; keep first occurrence
    return tuple(OrderedDict.fromkeys(recommendations))


def review_requirements(
    violations: Sequence[AdjustedViolation],
    now: datetime,
    contacts: Optional[ReviewContacts] = None,
) -> Tuple[ReviewRequirement, ...]:
    contacts = contacts or ReviewContacts()
    requirements: List[ReviewRequirement] = []

    critical = sum(1 for v in violations if v.adjusted_severity == Severity.CRITICAL)
    if critical:
        requirements.append(ReviewRequirement(
            type="ethics",
            reviewer=contacts.ethics,
            deadline=now + timedelta(hours=ETHICS_REVIEW_HOURS),
            mandatory=True,
            reason=f"{critical} critical ethical violation(s) detected",
        ))

    if any(v.category == Category.DISCRIMINATION for v in violations):
        requirements.append(ReviewRequirement(
            type="legal",
            reviewer=contacts.legal,
            deadline=now + timedelta(hours=LEGAL_REVIEW_HOURS),
            mandatory=True,
            reason="Potential discrimination violations require legal review",
        ))
    return tuple(requirements)


def report_id(violations: Sequence[AdjustedViolation], files_scanned: int, timestamp: datetime) -> str:
    digest = hashlib.sha256()
    digest.update(timestamp.isoformat().encode())
    digest.update(str(files_scanned).encode())
    for v in violations:
        digest.update(v.id.encode())
    return f"ethics-{int(timestamp.timestamp() * 1000)}-{digest.hexdigest()[:9]}"


def build_report(
    violations: Sequence[AdjustedViolation],
    files_scanned: int,
    standards: Iterable[str] = KNOWN_STANDARDS,
    author: str = "unknown",
    commit: str = "unknown",
    skipped: Iterable[Tuple[str, str]] = (),
    contacts: Optional[ReviewContacts] = None,
    timestamp: Optional[datetime] = None,
) -> ComplianceReport:
    """Aggregate adjusted violations into an immutable compliance report."""
    violations = sorted(violations, key=lambda v: v.sort_key)
    timestamp = timestamp or datetime.now(timezone.utc)
    total = len(violations)
    critical = sum(1 for v in violations if v.adjusted_severity == Severity.CRITICAL)

    return ComplianceReport(
        id=report_id(violations, files_scanned, timestamp),
        timestamp=timestamp,
        files_scanned=files_scanned,
        violations_found=total,
        critical_count=critical,
        compliance_score=compliance_score(total, critical),
        standard_checks=check_standards(violations, standards),
        recommendations=build_recommendations(violations),
        review_requirements=review_requirements(violations, timestamp, contacts),
        author=author,
        commit=commit,
        skipped=tuple(sorted(skipped)),
    )


def derive_badge(report: ComplianceReport, allowed: bool) -> ComplianceBadge:
    """Status badge; depends only on the report and the allow decision."""
    if not allowed:
        status = "blocked"
    elif report.critical_count > 0:
        status = "failing"
    elif report.violations_found > 0:
        status = "warning"
    else:
        status = "passing"

    return ComplianceBadge(
        status=status,
        score=report.compliance_score,
        text=f"Ethics: {report.compliance_score}%",
        color=BADGE_COLORS[status],
        details=(
            f"Violations: {report.violations_found}",
            f"Critical: {report.critical_count}",
            f"Files Scanned: {report.files_scanned}",
        ),
    )
