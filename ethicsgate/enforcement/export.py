"""
Report exporters.

Each renderer is a side-effect-free transform of the same
(ComplianceReport, violations) pair. Snippets and messages pass through the
log redactor so credentials caught by a rule are not copied into CI
artifacts.
"""

import json
import xml.etree.ElementTree as ET
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Sequence

from ethicsgate import __version__
from ethicsgate.enforcement.gate import CommitViolation, GateResult
from ethicsgate.enforcement.report import ComplianceBadge, ComplianceReport
from ethicsgate.logging.redaction import get_redactor
from ethicsgate.models import Severity

EXPORT_FORMATS = ("json", "junit", "sonar", "markdown", "sarif")

SONAR_SEVERITIES = {
    Severity.LOW: "MINOR",
    Severity.MEDIUM: "MAJOR",
    Severity.HIGH: "CRITICAL",
    Severity.CRITICAL: "BLOCKER",
}

SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"


def _redact(text: str) -> str:
    return get_redactor().redact_string(text)


def _violation_dict(cv: CommitViolation) -> Dict[str, Any]:
    data = cv.to_dict()
    data["snippet"] = _redact(data.get("snippet", ""))
    data["message"] = _redact(data.get("message", ""))
    return data


def to_json(
    report: ComplianceReport,
    violations: Sequence[CommitViolation],
    badge: Optional[ComplianceBadge] = None,
) -> str:
    data: Dict[str, Any] = {"report": report.to_dict()}
    if badge is not None:
        data["badge"] = badge.to_dict()
    data["violations"] = [_violation_dict(cv) for cv in violations]
    return json.dumps(data, indent=2) + "\n"


def to_junit(report: ComplianceReport, violations: Sequence[CommitViolation]) -> str:
    """One testcase per violation; blocking ones are failures."""
    by_file: "OrderedDict[str, List[CommitViolation]]" = OrderedDict()
    for cv in violations:
        by_file.setdefault(cv.file, []).append(cv)

    root = ET.Element("testsuites", {
        "name": "EthicsGate",
        "tests": str(len(violations)),
        "failures": str(sum(1 for cv in violations if cv.blocks)),
        "errors": "0",
    })
    for file, file_violations in by_file.items():
        suite = ET.SubElement(root, "testsuite", {
            "name": file,
            "tests": str(len(file_violations)),
            "failures": str(sum(1 for cv in file_violations if cv.blocks)),
        })
        for cv in file_violations:
            case = ET.SubElement(suite, "testcase", {
                "name": f"Line {cv.line}: {cv.violation.category.value}",
                "classname": file,
            })
            if cv.blocks:
                failure = ET.SubElement(case, "failure", {
                    "message": _redact(cv.violation.message),
                    "type": cv.violation.adjusted_severity.value,
                })
                failure.text = cv.violation.recommendation
            elif cv.override is not None:
                skipped = ET.SubElement(case, "skipped", {"message": "overridden"})
                skipped.text = cv.override.reason

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def to_sonar(report: ComplianceReport, violations: Sequence[CommitViolation]) -> str:
    """Generic external issue import format."""
    issues = [
        {
            "engineId": "ethicsgate",
            "ruleId": cv.violation.rule_id,
            "severity": SONAR_SEVERITIES[cv.violation.adjusted_severity],
            "type": "VULNERABILITY" if cv.violation.category.value == "misuse" else "CODE_SMELL",
            "primaryLocation": {
                "message": _redact(cv.violation.message),
                "filePath": cv.file,
                "textRange": {"startLine": cv.line, "endLine": cv.line},
            },
        }
        for cv in violations
    ]
    return json.dumps({"issues": issues}, indent=2) + "\n"


def to_markdown(
    report: ComplianceReport,
    violations: Sequence[CommitViolation],
    badge: Optional[ComplianceBadge] = None,
) -> str:
    lines = [
        "# Ethics Compliance Report",
        "",
        f"**Report ID:** {report.id}",
        f"**Timestamp:** {report.timestamp.isoformat()}",
        f"**Author:** {report.author}",
        f"**Compliance Score:** {report.compliance_score}%",
    ]
    if badge is not None:
        lines.append(f"**Status:** {badge.status}")
    lines += [
        "",
        "## Summary",
        "",
        f"- Files Scanned: {report.files_scanned}",
        f"- Violations Found: {report.violations_found}",
        f"- Critical Violations: {report.critical_count}",
        "",
    ]

    if violations:
        lines += ["## Violations", ""]
        for number, cv in enumerate(violations, 1):
            av = cv.violation
            lines += [
                f"### {number}. {cv.file}:{cv.line}",
                "",
                f"**Category:** {av.category.value}",
                f"**Severity:** {av.adjusted_severity.value} (detected as {av.original_severity.value})",
                f"**Blocking:** {'yes' if cv.blocks else 'no'}",
                f"**Message:** {_redact(av.message)}",
                f"**Recommendation:** {av.recommendation}",
                "",
            ]

    failing = [c for c in report.standard_checks if not c.compliant]
    if failing:
        lines += ["## Standards", ""]
        lines += [f"- {c.standard}: {c.risk_level.value} risk" for c in failing]
        lines.append("")

    if report.recommendations:
        lines += ["## Recommendations", ""]
        lines += [f"- {rec}" for rec in report.recommendations]
        lines.append("")

    if report.skipped:
        lines += ["## Skipped Files", ""]
        lines += [f"- {path}: {reason}" for path, reason in report.skipped]
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def _sarif_level(cv: CommitViolation) -> str:
    if cv.blocks:
        return "error"
    if cv.violation.adjusted_severity >= Severity.MEDIUM:
        return "warning"
    return "note"


def to_sarif(report: ComplianceReport, violations: Sequence[CommitViolation]) -> str:
    """SARIF 2.1.0 log for code scanning dashboards."""
    rule_ids = sorted({cv.violation.rule_id for cv in violations})
    rules = []
    for rule_id in rule_ids:
        sample = next(cv.violation for cv in violations if cv.violation.rule_id == rule_id)
        rules.append({
            "id": rule_id,
            "shortDescription": {"text": _redact(sample.message)},
            "help": {"text": sample.recommendation},
            "properties": {"category": sample.category.value},
        })

    results = []
    for cv in violations:
        av = cv.violation
        results.append({
            "ruleId": av.rule_id,
            "level": _sarif_level(cv),
            "message": {"text": _redact(av.message)},
            "locations": [{
                "physicalLocation": {
                    "artifactLocation": {"uri": cv.file},
                    "region": {
                        "startLine": av.line,
                        "startColumn": av.column + 1,
                        "snippet": {"text": _redact(av.snippet)},
                    },
                },
            }],
            "properties": {
                "originalSeverity": av.original_severity.value,
                "adjustedSeverity": av.adjusted_severity.value,
                "confidence": round(av.confidence, 4),
                "requiresReview": av.requires_review,
            },
        })

    log = {
        "$schema": SARIF_SCHEMA,
        "version": "2.1.0",
        "runs": [{
            "tool": {"driver": {
                "name": "ethicsgate",
                "version": __version__,
                "rules": rules,
            }},
            "results": results,
            "properties": {
                "reportId": report.id,
                "complianceScore": report.compliance_score,
            },
        }],
    }
    return json.dumps(log, indent=2) + "\n"


_RENDERERS: Dict[str, Callable[..., str]] = {
    "json": to_json,
    "junit": to_junit,
    "sonar": to_sonar,
    "markdown": to_markdown,
    "sarif": to_sarif,
}


def render(
    fmt: str,
    report: ComplianceReport,
    violations: Sequence[CommitViolation],
    badge: Optional[ComplianceBadge] = None,
) -> str:
    """Dispatch to a renderer by format name. Raises ValueError for unknown formats."""
    fmt = fmt.lower()
    if fmt not in _RENDERERS:
        raise ValueError(f"Unknown export format '{fmt}'. Choose from: {', '.join(EXPORT_FORMATS)}")
    if fmt in ("json", "markdown"):
        return _RENDERERS[fmt](report, violations, badge)
    return _RENDERERS[fmt](report, violations)


def render_result(fmt: str, result: GateResult) -> str:
    return render(fmt, result.report, result.violations, result.badge)
