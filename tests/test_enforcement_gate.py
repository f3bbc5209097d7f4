#!/usr/bin/env python3
"""
Tests for the EthicsGate enforcement gate and compliance report.

Tests coverage of:
- Allow/block decisions for critical and high-severity violations
- Badge derivation (blocked, failing, warning, passing)
- Override rules: never for critical or discrimination, approvals
- Ethics score bookkeeping happens once per result
- Report scoring, standards, review requirements and determinism
"""

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

pytestmark = pytest.mark.enforcement

from ethicsgate.config.models import GateConfig
from ethicsgate.enforcement.gate import (
    ChangedFile,
    Changeset,
    EnforcementGate,
    OverrideRejected,
)
from ethicsgate.enforcement.report import (
    build_report,
    check_standards,
    compliance_score,
)
from ethicsgate.models import Category, Severity
from ethicsgate.team.registry import UNKNOWN_ACTOR_ID, DeveloperProfile

NATIONALITY_LINE = 'if (user.nationality === "china") { return reject(); }'
GEOLOCATION_LINE = "navigator.geolocation.getCurrentPosition(onPosition);"
SSN_LINE = "const ssn = form.ssn;"
FIXED_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _changeset(*files):
    return Changeset(files=[ChangedFile(path=p, content=c) for p, c in files])


@pytest.fixture
def make_gate(engine, adjuster):
    def _make(**config):
        return EnforcementGate(engine, adjuster, GateConfig(**config))
    return _make


# =============================================================================
# Decisions
# =============================================================================

class TestDecisions:

    def test_critical_blocks_with_block_on_critical(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/app.js", NATIONALITY_LINE)), timestamp=FIXED_TIME)

        assert not result.allowed
        assert result.badge.status == "blocked"
        assert result.blocking_reasons == (
            "1 critical ethical violation(s) must be resolved before commit",
        )
        [cv] = result.violations
        assert cv.is_blocking
        assert not cv.can_be_overridden
        assert result.actor_id == UNKNOWN_ACTOR_ID

    def test_critical_without_block_on_critical_fails_but_allows(self, make_gate):
        gate = make_gate(block_on_critical=False)
        result = gate.evaluate(_changeset(("src/app.js", NATIONALITY_LINE)))
        assert result.allowed
        assert result.badge.status == "failing"

    def test_medium_warns(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/app.js", GEOLOCATION_LINE)))

        assert result.allowed
        assert result.badge.status == "warning"
        assert result.blocking_reasons == ()
        assert "1 ethical violation(s) detected that should be addressed" in result.warnings
        assert "1 violation(s) require team review" in result.warnings

    def test_clean_changeset_passes(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/app.js", "const total = 1;")))
        assert result.allowed
        assert result.badge.status == "passing"
        assert result.badge.text == "Ethics: 100%"
        assert result.warnings == ()

    def test_high_requiring_review_blocks(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/form.js", SSN_LINE)))

        [cv] = result.violations
        assert cv.violation.category == Category.PRIVACY
        assert cv.violation.adjusted_severity == Severity.HIGH
        assert cv.is_blocking
        assert result.blocking_reasons == (
            "1 high-severity violation(s) require review before commit",
        )

    def test_high_not_blocking_without_review_requirement(self, make_gate):
        result = make_gate(require_review_for_high=False).evaluate(_changeset(("src/form.js", SSN_LINE)))
        assert result.allowed

    def test_default_author_downgrades_critical_to_blocking_high(self, make_gate):
        ada = DeveloperProfile(id="ada")
        result = make_gate().evaluate(_changeset(("src/app.js", NATIONALITY_LINE)), actor=ada)
        [cv] = result.violations
        assert cv.violation.adjusted_severity == Severity.HIGH
        assert not result.allowed
        assert result.actor_id == "ada"

    def test_evaluate_does_not_touch_ethics_scores(self, make_gate, registry):
        make_gate().evaluate(_changeset(("src/app.js", NATIONALITY_LINE)))
        assert registry.get_profile(UNKNOWN_ACTOR_ID).ethics_score == 0.5

    def test_skipped_files_become_warnings(self, make_gate, tmp_path):
        (tmp_path / "bad.js").write_bytes(b"\xff\xfe broken")
        (tmp_path / "ok.js").write_text("const a = 1;")
        changeset = Changeset.from_paths([tmp_path / "bad.js", tmp_path / "ok.js"])

        result = make_gate().evaluate(changeset)

        assert result.report.files_scanned == 1
        assert result.skipped[0][0].endswith("bad.js")
        assert any(w.startswith("Skipped ") for w in result.warnings)

    def test_cancelled_evaluation(self, make_gate):
        cancel = threading.Event()
        cancel.set()
        result = make_gate().evaluate(_changeset(("a.js", NATIONALITY_LINE)), cancel_event=cancel)
        assert result.cancelled
        assert result.not_scanned == ("a.js",)
        assert "Scan cancelled; 1 file(s) not scanned" in result.warnings

    def test_evaluation_is_reproducible(self, make_gate):
        changeset = _changeset(("src/app.js", NATIONALITY_LINE), ("src/geo.js", GEOLOCATION_LINE))
        gate = make_gate()
        first = gate.evaluate(changeset, timestamp=FIXED_TIME)
        second = gate.evaluate(changeset, timestamp=FIXED_TIME)
        assert first.to_dict() == second.to_dict()
        assert first.report.id.startswith(f"ethics-{int(FIXED_TIME.timestamp() * 1000)}-")


# =============================================================================
# Overrides
# =============================================================================

class TestOverrides:

    def test_critical_is_never_overridable(self, make_gate):
        gate = make_gate(allow_override=True)
        result = gate.evaluate(_changeset(("src/app.js", NATIONALITY_LINE)))
        with pytest.raises(OverrideRejected) as exc:
            gate.apply_override(result, result.violations[0].id, "ada", "false positive", "grace")
        assert exc.value.reason == "critical violations are never overridable"

    def test_discrimination_is_never_overridable(self, make_gate):
        gate = make_gate(allow_override=True)
        result = gate.evaluate(_changeset(("src/app.js", NATIONALITY_LINE)), actor=DeveloperProfile(id="ada"))
        with pytest.raises(OverrideRejected) as exc:
            gate.apply_override(result, result.violations[0].id, "ada", "legacy", "grace")
        assert exc.value.reason == "discrimination violations are never overridable"

    def test_blocking_needs_allow_override(self, make_gate):
        gate = make_gate()
        result = gate.evaluate(_changeset(("src/form.js", SSN_LINE)))
        with pytest.raises(OverrideRejected) as exc:
            gate.apply_override(result, result.violations[0].id, "ada", "tokenized upstream", "grace")
        assert exc.value.reason == "blocking violation and overrides are not allowed"

    def test_blocking_override_needs_independent_approval(self, make_gate):
        gate = make_gate(allow_override=True)
        result = gate.evaluate(_changeset(("src/form.js", SSN_LINE)))
        vid = result.violations[0].id

        with pytest.raises(OverrideRejected, match="requires approval"):
            gate.apply_override(result, vid, "ada", "tokenized upstream")
        with pytest.raises(OverrideRejected, match="self-approved"):
            gate.apply_override(result, vid, "ada", "tokenized upstream", approved_by="ada")
        with pytest.raises(OverrideRejected, match="reason is required"):
            gate.apply_override(result, vid, "ada", "   ", approved_by="grace")

    def test_approved_override_unblocks(self, make_gate):
        gate = make_gate(allow_override=True)
        result = gate.evaluate(_changeset(("src/form.js", SSN_LINE)))
        vid = result.violations[0].id

        updated = gate.apply_override(result, vid, "ada", " tokenized upstream ", approved_by="grace")

        assert not result.allowed
        assert updated.allowed
        assert updated.badge.status == "warning"
        assert updated.get(vid).override.reason == "tokenized upstream"
        assert "1 violation(s) overridden with a recorded reason" in updated.warnings
        with pytest.raises(OverrideRejected, match="already overridden"):
            gate.apply_override(updated, vid, "ada", "again", approved_by="grace")

    def test_non_blocking_override_needs_no_approval(self, make_gate):
        gate = make_gate()
        result = gate.evaluate(_changeset(("src/app.js", GEOLOCATION_LINE)))
        updated = gate.apply_override(result, result.violations[0].id, "ada", "consent handled by SDK")
        assert updated.violations[0].override.approved_by is None

    def test_unknown_violation(self, make_gate):
        gate = make_gate()
        result = gate.evaluate(_changeset(("src/app.js", "ok")))
        with pytest.raises(OverrideRejected, match="no such violation"):
            gate.apply_override(result, "missing@a.js:1:0", "ada", "reason")


# =============================================================================
# Recording
# =============================================================================

class TestRecordOutcome:

    def test_record_outcome_applies_once(self, make_gate, registry):
        gate = make_gate()
        result = gate.evaluate(_changeset(("src/app.js", NATIONALITY_LINE)))

        profile = gate.record_outcome(result)

        assert profile.ethics_score == pytest.approx(0.35)
        assert gate.record_outcome(result) is None
        assert registry.get_profile(UNKNOWN_ACTOR_ID).violation_count == 1

    def test_recorded_report_ids_are_bounded(self, make_gate, monkeypatch):
        monkeypatch.setattr("ethicsgate.enforcement.gate.RECORDED_REPORTS_LIMIT", 2)
        gate = make_gate()
        results = [
            gate.evaluate(
                _changeset(("src/app.js", NATIONALITY_LINE)),
                timestamp=FIXED_TIME + timedelta(minutes=i),
            )
            for i in range(3)
        ]

        for result in results:
            assert gate.record_outcome(result) is not None

        assert gate.record_outcome(results[2]) is None
        # The oldest id fell out of the window
        assert gate.record_outcome(results[0]) is not None

    def test_host_supplied_actor_is_registered(self, make_gate, registry):
        gate = make_gate()
        alice = DeveloperProfile(id="alice@example.com")
        assert registry.get_profile("alice@example.com") is None

        result = gate.evaluate(_changeset(("src/app.js", NATIONALITY_LINE)), actor=alice)
        profile = gate.record_outcome(result)

        assert profile.id == "alice@example.com"
        assert profile.violation_count == 1
        assert profile.ethics_score < alice.ethics_score
        assert registry.get_profile("alice@example.com") == profile

    def test_registered_actor_state_is_kept(self, registry):
        registry.register_profile(DeveloperProfile(id="bob", ethics_score=0.4))
        stored = registry.observe(DeveloperProfile(id="bob"))
        assert stored.ethics_score == 0.4

    def test_record_outcome_without_violations(self, make_gate):
        gate = make_gate()
        assert gate.record_outcome(gate.evaluate(_changeset(("a.js", "ok")))) is None


# =============================================================================
# Report
# =============================================================================

class TestReport:

    def test_compliance_score(self):
        assert compliance_score(0, 0) == 100
        assert compliance_score(1, 1) == 75
        assert compliance_score(30, 0) == 0

    def test_report_for_critical_discrimination(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/app.js", NATIONALITY_LINE)), timestamp=FIXED_TIME)
        report = result.report

        assert report.violations_found == 1
        assert report.critical_count == 1
        assert report.compliance_score == 75
        assert [r.type for r in report.review_requirements] == ["ethics", "legal"]
        assert report.review_requirements[0].deadline == FIXED_TIME + timedelta(hours=24)
        assert report.review_requirements[1].deadline == FIXED_TIME + timedelta(hours=48)
        assert "Immediate review and remediation of critical violations required" in report.recommendations

    def test_standard_checks(self, make_gate):
        result = make_gate().evaluate(_changeset(("src/app.js", NATIONALITY_LINE)))
        checks = {c.standard: c for c in result.report.standard_checks}
        assert not checks["GDPR"].compliant
        assert checks["GDPR"].risk_level == Severity.CRITICAL
        assert checks["SOX"].compliant
        assert checks["SOX"].risk_level == Severity.LOW

    def test_configured_standards_only(self):
        checks = check_standards([], ["hipaa"])
        assert [c.standard for c in checks] == ["HIPAA"]

    def test_empty_report(self):
        report = build_report([], files_scanned=3, timestamp=FIXED_TIME)
        assert report.compliance_score == 100
        assert report.recommendations == ()
        assert report.review_requirements == ()
        assert report.timestamp == FIXED_TIME
