"""
EthicsGate Enforcement Gate

Runs detection and severity adjustment over a changeset and turns the
result into an allow/block decision with a compliance report and badge.

Blocking rule:
    (block_on_critical and adjusted == critical)
    or (adjusted == high and requires_review and require_review_for_high)

Override rule: adjusted-critical and discrimination violations are never
overridable. Anything else may be waived with a recorded reason when it
is not blocking, or when allow_override is configured.

evaluate() never touches the actor registry; record_outcome() applies the
ethics score decrements once per result.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ethicsgate.config.models import GateConfig
from ethicsgate.detection.engine import DetectionEngine, display_path
from ethicsgate.detection.language import detect_language, is_relevant_file, iter_source_files
from ethicsgate.enforcement.hooks import head_commit, staged_files
from ethicsgate.enforcement.report import (
    ComplianceBadge,
    ComplianceReport,
    build_report,
    derive_badge,
)
from ethicsgate.models import AnalysisContext, Category, Severity, Violation
from ethicsgate.team.adjustment import AdjustedViolation, SeverityAdjuster
from ethicsgate.team.registry import DeveloperProfile, TeamContext

logger = logging.getLogger(__name__)

# Report ids remembered for duplicate-record detection; oldest are forgotten first
RECORDED_REPORTS_LIMIT = 1024


class OverrideRejected(Exception):
    """An override request was refused; ``reason`` says why."""

    def __init__(self, violation_id: str, reason: str):
        self.violation_id = violation_id
        self.reason = reason
        super().__init__(f"Override of {violation_id} rejected: {reason}")


# ============================================================================
# Changeset
# ============================================================================

@dataclass(frozen=True)
class ChangedFile:
    path: str
    content: str


@dataclass
class Changeset:
    """Files to gate, with any that could not be read and why."""
    files: List[ChangedFile] = field(default_factory=list)
    workspace: Optional[Path] = None
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_paths(
        cls,
        paths: Iterable[Union[str, Path]],
        root: Optional[Union[str, Path]] = None,
    ) -> "Changeset":
        root = Path(root) if root is not None else None
        changeset = cls(workspace=root)
        for path in paths:
            path = Path(path)
            label = display_path(path, root)
            try:
                content = path.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                changeset._skip(label, f"not valid UTF-8 text ({e.reason})")
                continue
            except OSError as e:
                changeset._skip(label, f"unreadable: {e.strerror or e}")
                continue
            changeset.files.append(ChangedFile(path=label, content=content))
        return changeset

    @classmethod
    def from_workspace(cls, root: Union[str, Path]) -> "Changeset":
        """Every relevant source file under root."""
        return cls.from_paths(iter_source_files(root), root)

    @classmethod
    def from_staged(cls, root: Union[str, Path]) -> "Changeset":
        """Relevant files currently staged in git."""
        return cls.from_paths([p for p in staged_files(root) if is_relevant_file(p)], root)

    def _skip(self, label: str, reason: str) -> None:
        logger.warning(f"Skipping {label}: {reason}")
        self.skipped.append((label, reason))


# ============================================================================
# Result types
# ============================================================================

@dataclass(frozen=True)
class OverrideRecord:
    violation_id: str
    actor: str
    reason: str
    approved_by: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "violation_id": self.violation_id,
            "actor": self.actor,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CommitViolation:
    violation: AdjustedViolation
    is_blocking: bool
    can_be_overridden: bool
    override: Optional[OverrideRecord] = None

    @property
    def id(self) -> str:
        return self.violation.id

    @property
    def file(self) -> str:
        return self.violation.file_path

    @property
    def line(self) -> int:
        return self.violation.line

    @property
    def blocks(self) -> bool:
        """Still blocking after any override."""
        return self.is_blocking and self.override is None

    def to_dict(self) -> Dict[str, Any]:
        data = self.violation.to_dict()
        data.update({
            "is_blocking": self.is_blocking,
            "can_be_overridden": self.can_be_overridden,
            "override": self.override.to_dict() if self.override else None,
        })
        return data


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    violations: Tuple[CommitViolation, ...]
    report: ComplianceReport
    blocking_reasons: Tuple[str, ...]
    warnings: Tuple[str, ...]
    badge: ComplianceBadge
    actor_id: str = "unknown"
    cancelled: bool = False
    not_scanned: Tuple[str, ...] = ()

    @property
    def skipped(self) -> Tuple[Tuple[str, str], ...]:
        return self.report.skipped

    @property
    def blocking(self) -> List[CommitViolation]:
        return [cv for cv in self.violations if cv.blocks]

    def get(self, violation_id: str) -> Optional[CommitViolation]:
        return next((cv for cv in self.violations if cv.id == violation_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "actor": self.actor_id,
            "cancelled": self.cancelled,
            "not_scanned": list(self.not_scanned),
            "blocking_reasons": list(self.blocking_reasons),
            "warnings": list(self.warnings),
            "badge": self.badge.to_dict(),
            "report": self.report.to_dict(),
            "violations": [cv.to_dict() for cv in self.violations],
        }


# ============================================================================
# Gate
# ============================================================================

def blocking_reasons(violations: Iterable[CommitViolation]) -> Tuple[str, ...]:
    blocking = [cv for cv in violations if cv.blocks]
    critical = sum(1 for cv in blocking if cv.violation.adjusted_severity == Severity.CRITICAL)
    high = sum(1 for cv in blocking if cv.violation.adjusted_severity == Severity.HIGH)
    reasons = []
    if critical:
        reasons.append(f"{critical} critical ethical violation(s) must be resolved before commit")
    if high:
        reasons.append(f"{high} high-severity violation(s) require review before commit")
    return tuple(reasons)


def gate_warnings(
    violations: Iterable[CommitViolation],
    skipped: Iterable[Tuple[str, str]] = (),
    not_scanned: Iterable[str] = (),
) -> Tuple[str, ...]:
    non_blocking = [cv for cv in violations if not cv.blocks]
    warnings = []

    count = sum(
        1 for cv in non_blocking
        if cv.violation.adjusted_severity in (Severity.MEDIUM, Severity.HIGH)
    )
    if count:
        warnings.append(f"{count} ethical violation(s) detected that should be addressed")
    review = sum(1 for cv in non_blocking if cv.violation.requires_review)
    if review:
        warnings.append(f"{review} violation(s) require team review")
    overridden = sum(1 for cv in non_blocking if cv.override is not None)
    if overridden:
        warnings.append(f"{overridden} violation(s) overridden with a recorded reason")

    for path, reason in skipped:
        warnings.append(f"Skipped {path}: {reason}")
    not_scanned = list(not_scanned)
    if not_scanned:
        warnings.append(f"Scan cancelled; {len(not_scanned)} file(s) not scanned")
    return tuple(warnings)


class EnforcementGate:
    """Allow/block decision over a changeset."""

    def __init__(
        self,
        engine: DetectionEngine,
        adjuster: SeverityAdjuster,
        config: Optional[GateConfig] = None,
        patent_scanner=None,
    ):
        self.engine = engine
        self.adjuster = adjuster
        self.config = config or GateConfig()
        self.patent_scanner = patent_scanner
        self._recorded: "OrderedDict[str, None]" = OrderedDict()
        self._record_lock = threading.Lock()

    # -- decisions -------------------------------------------------------

    def is_blocking(self, av: AdjustedViolation) -> bool:
        if self.config.block_on_critical and av.adjusted_severity == Severity.CRITICAL:
            return True
        return (
            av.adjusted_severity == Severity.HIGH
            and av.requires_review
            and self.config.require_review_for_high
        )

    def can_override(self, av: AdjustedViolation) -> bool:
        if av.adjusted_severity == Severity.CRITICAL or av.category == Category.DISCRIMINATION:
            return False
        return self.config.allow_override or not self.is_blocking(av)

    def commit_violation(self, av: AdjustedViolation) -> CommitViolation:
        return CommitViolation(
            violation=av,
            is_blocking=self.is_blocking(av),
            can_be_overridden=self.can_override(av),
        )

    # -- evaluation ------------------------------------------------------

    def evaluate(
        self,
        changeset: Changeset,
        cancel_event: Optional[threading.Event] = None,
        actor: Optional[DeveloperProfile] = None,
        team: Optional[TeamContext] = None,
        timestamp: Optional[datetime] = None,
    ) -> GateResult:
        """
        Detect, adjust and decide.

        The actor is registered on first observation; ethics scores only
        change in record_outcome.
        """
        contexts = [
            AnalysisContext(
                content=f.content,
                file_name=f.path,
                language=detect_language(f.path),
                project_context=self.config.project_context,
            )
            for f in changeset.files
        ]
        batch = self.engine.analyze_many(contexts, workers=self.config.workers, cancel_event=cancel_event)

        violations: List[Violation] = list(batch.violations)
        if self.patent_scanner is not None:
            for result in batch.results:
                risks = self.patent_scanner.deduplicate(self.patent_scanner.scan_text(
                    result.context.content, result.file_path, result.context.language
                ))
                violations.extend(self.patent_scanner.to_violations(risks))
        violations.sort(key=lambda v: v.sort_key)

        profile, team_ctx = self.adjuster.resolve(changeset.workspace, actor, team)
        adjusted = self.adjuster.adjust(violations, actor=profile, team=team_ctx)

        report = build_report(
            adjusted,
            files_scanned=batch.files_scanned,
            standards=self.config.standards,
            author=profile.name or profile.id,
            commit=head_commit(changeset.workspace) if changeset.workspace else "unknown",
            skipped=list(changeset.skipped) + list(batch.skipped),
            contacts=self.config.review_contacts,
            timestamp=timestamp,
        )
        commit_violations = tuple(self.commit_violation(av) for av in adjusted)
        result = self._assemble(
            commit_violations, report, profile.id, batch.cancelled, tuple(batch.not_scanned)
        )
        logger.info(
            f"Gate {'allowed' if result.allowed else 'blocked'}: "
            f"{report.violations_found} violation(s) in {report.files_scanned} file(s), "
            f"score {report.compliance_score}"
        )
        return result

    def _assemble(
        self,
        violations: Tuple[CommitViolation, ...],
        report: ComplianceReport,
        actor_id: str,
        cancelled: bool,
        not_scanned: Tuple[str, ...],
    ) -> GateResult:
        allowed = not any(cv.blocks for cv in violations)
        return GateResult(
            allowed=allowed,
            violations=violations,
            report=report,
            blocking_reasons=blocking_reasons(violations),
            warnings=gate_warnings(violations, report.skipped, not_scanned),
            badge=derive_badge(report, allowed),
            actor_id=actor_id,
            cancelled=cancelled,
            not_scanned=not_scanned,
        )

    # -- overrides -------------------------------------------------------

    def apply_override(
        self,
        result: GateResult,
        violation_id: str,
        actor: str,
        reason: str,
        approved_by: Optional[str] = None,
    ) -> GateResult:
        """
        Waive one violation with a recorded reason.

        Returns a new GateResult; raises OverrideRejected when the violation
        is unknown, not overridable, already overridden, the reason is
        empty, or a required approval is missing.
        """
        target = result.get(violation_id)
        if target is None:
            raise OverrideRejected(violation_id, "no such violation in this result")
        av = target.violation
        if av.adjusted_severity == Severity.CRITICAL:
            raise OverrideRejected(violation_id, "critical violations are never overridable")
        if av.category == Category.DISCRIMINATION:
            raise OverrideRejected(violation_id, "discrimination violations are never overridable")
        if not target.can_be_overridden:
            raise OverrideRejected(violation_id, "blocking violation and overrides are not allowed")
        if target.override is not None:
            raise OverrideRejected(violation_id, "violation is already overridden")
        if not reason or not reason.strip():
            raise OverrideRejected(violation_id, "an override reason is required")
        if target.is_blocking and self.config.override_requires_approval:
            if not approved_by:
                raise OverrideRejected(violation_id, "override requires approval")
            if approved_by == actor:
                raise OverrideRejected(violation_id, "override cannot be self-approved")

        record = OverrideRecord(
            violation_id=violation_id,
            actor=actor,
            reason=reason.strip(),
            approved_by=approved_by,
        )
        logger.info(f"Override recorded for {violation_id} by {actor}: {record.reason}")
        updated = tuple(
            replace(cv, override=record) if cv.id == violation_id else cv
            for cv in result.violations
        )
        return self._assemble(updated, result.report, result.actor_id, result.cancelled, result.not_scanned)

    # -- side effects ----------------------------------------------------

    def record_outcome(self, result: GateResult) -> Optional[DeveloperProfile]:
        """
        Apply ethics score decrements for the scanned violations.

        Each report is recorded at most once among the last
        RECORDED_REPORTS_LIMIT recorded; files that were never scanned
        contribute nothing.
        """
        with self._record_lock:
            if result.report.id in self._recorded:
                logger.warning(f"Outcome for report {result.report.id} already recorded")
                return None
            self._recorded[result.report.id] = None
            while len(self._recorded) > RECORDED_REPORTS_LIMIT:
                self._recorded.popitem(last=False)
        return self.adjuster.record(cv.violation for cv in result.violations)
