"""
EthicsGate Patent-Risk Scanner

Scans source text against the patent catalogue and reports PatentRisk
findings. Findings convert to ordinary Violations (category misuse, rule id
``patent-<pattern>``) so the enforcement gate treats both pipelines the
same way.

Ids are deterministic: ``{match_type}-{pattern}-{file}-{line}``.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ethicsgate.detection.engine import display_path
from ethicsgate.detection.language import detect_language, iter_source_files
from ethicsgate.models import Category, Severity, Violation, clamp01
from ethicsgate.patent.catalogue import (
    ALGORITHM_PATTERNS,
    KEYWORD_PATTERNS,
    MIN_CLASS_CHARS,
    MIN_FUNCTION_CHARS,
    SEMANTIC_THRESHOLD,
    STRUCTURAL_PATTERNS,
    MatchType,
    MitigationStrategy,
    algorithmic_mitigations,
    generic_mitigations,
    keyword_mitigations,
    risk_from_similarity,
    semantic_family,
    structural_mitigations,
)

logger = logging.getLogger(__name__)

SECTION_RADIUS = 5
DEDUP_LINE_WINDOW = 10
TOP_RISKS = 5
VIOLATION_MESSAGE_PREFIX = "Potential patent infringement detected: "

_SCRIPT_FUNCTION = re.compile(
    r"^\s*(?:async\s+)?(?:function|const\s+\w+\s*=\s*(?:async\s+)?\(|export\s+(?:async\s+)?function)"
)
_SCRIPT_CLASS = re.compile(r"^\s*(?:export\s+)?class\s+\w+")
_PYTHON_FUNCTION = re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(")
_PYTHON_CLASS = re.compile(r"^\s*class\s+\w+")
_FUNCTION_NAME = re.compile(r"(?:function|def|async\s+function)\s+([a-zA-Z_][a-zA-Z0-9_]*)")
_CLASS_NAME = re.compile(r"(?:class|interface)\s+([a-zA-Z_][a-zA-Z0-9_]*)")


@dataclass(frozen=True)
class CodeSection:
    file: str
    start_line: int
    end_line: int
    code: str
    function_name: Optional[str] = None
    class_name: Optional[str] = None

    @property
    def context(self) -> str:
        return f"Lines {self.start_line}-{self.end_line} in {self.file}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "context": self.context,
            "function_name": self.function_name,
            "class_name": self.class_name,
        }


@dataclass(frozen=True)
class PatentRisk:
    id: str
    pattern_id: str
    title: str
    risk_level: Severity
    confidence: float
    match_type: MatchType
    line: int
    snippet: str
    description: str
    recommendation: str
    legal_advice: str
    section: CodeSection
    mitigation: Tuple[MitigationStrategy, ...] = ()
    patent_number: Optional[str] = None
    similarity_score: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp01(self.confidence))

    @property
    def file(self) -> str:
        return self.section.file

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern_id,
            "title": self.title,
            "patent_number": self.patent_number,
            "risk_level": self.risk_level.value,
            "confidence": round(self.confidence, 4),
            "match_type": self.match_type.value,
            "file": self.file,
            "line": self.line,
            "description": self.description,
            "recommendation": self.recommendation,
            "legal_advice": self.legal_advice,
            "similarity_score": self.similarity_score,
            "section": self.section.to_dict(),
            "mitigation": [m.to_dict() for m in self.mitigation],
        }


@dataclass(frozen=True)
class LegalAction:
    type: str  # immediate, urgent, planned
    description: str
    assignee: str
    priority: int
    deadline: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "assignee": self.assignee,
            "priority": self.priority,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }


@dataclass(frozen=True)
class PatentScanSummary:
    overall_risk: Severity
    confidence: float
    top_risks: Tuple[PatentRisk, ...]
    risks_by_type: Dict[str, int]
    estimated_legal_cost: str
    urgent_actions: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk": self.overall_risk.value,
            "confidence": round(self.confidence, 4),
            "top_risks": [r.id for r in self.top_risks],
            "risks_by_type": dict(self.risks_by_type),
            "estimated_legal_cost": self.estimated_legal_cost,
            "urgent_actions": list(self.urgent_actions),
        }


@dataclass
class PatentScanResult:
    total_files: int
    risks: List[PatentRisk]
    summary: PatentScanSummary
    recommendations: List[str]
    legal_actions: List[LegalAction]
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    not_scanned: List[str] = field(default_factory=list)

    @property
    def scanned_files(self) -> int:
        return self.total_files - len(self.skipped) - len(self.not_scanned)

    @property
    def high_risk_count(self) -> int:
        return sum(1 for r in self.risks if r.risk_level == Severity.HIGH)

    @property
    def critical_risk_count(self) -> int:
        return sum(1 for r in self.risks if r.risk_level == Severity.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "scanned_files": self.scanned_files,
            "risks_found": len(self.risks),
            "high_risk_count": self.high_risk_count,
            "critical_risk_count": self.critical_risk_count,
            "summary": self.summary.to_dict(),
            "recommendations": list(self.recommendations),
            "legal_actions": [a.to_dict() for a in self.legal_actions],
            "skipped": [{"file": p, "reason": r} for p, r in self.skipped],
            "risks": [r.to_dict() for r in self.risks],
        }


# ============================================================================
# Section helpers
# ============================================================================

def _enclosing_names(lines: Sequence[str], line_number: int) -> Tuple[Optional[str], Optional[str]]:
    function_name = class_name = None
    for index in range(min(line_number, len(lines)) - 1, -1, -1):
        text = lines[index].strip()
        if function_name is None:
            match = _FUNCTION_NAME.search(text)
            if match:
                function_name = match.group(1)
        if class_name is None:
            match = _CLASS_NAME.search(text)
            if match:
                class_name = match.group(1)
        if (function_name and class_name) or "module.exports" in text or text.startswith("import "):
            break
    return function_name, class_name


def code_section(lines: Sequence[str], line_number: int, file_path: str) -> CodeSection:
    """Up to SECTION_RADIUS lines either side of a 1-based line."""
    start = max(0, line_number - SECTION_RADIUS)
    end = min(len(lines) - 1, line_number + SECTION_RADIUS)
    function_name, class_name = _enclosing_names(lines, line_number)
    return CodeSection(
        file=file_path,
        start_line=start + 1,
        end_line=end + 1,
        code="\n".join(lines[start:end + 1]),
        function_name=function_name,
        class_name=class_name,
    )


def _brace_block(lines: Sequence[str], start: int) -> Optional[Tuple[int, int]]:
    depth = 0
    opened = False
    for index in range(start, len(lines)):
        for char in lines[index]:
            if char == "{":
                depth += 1
                opened = True
            elif char == "}":
                depth -= 1
        if opened and depth == 0:
            return (start, index) if index > start else None
    return None


def _indent_block(lines: Sequence[str], start: int) -> Optional[Tuple[int, int]]:
    indent = len(lines[start]) - len(lines[start].lstrip())
    end = start
    for index in range(start + 1, len(lines)):
        text = lines[index]
        if not text.strip():
            continue
        if len(text) - len(text.lstrip()) <= indent:
            break
        end = index
    return (start, end) if end > start else None


def meaningful_sections(lines: Sequence[str], language: str) -> List[Tuple[int, int, str]]:
    """(start, end, code) for substantial functions and classes, 0-based inclusive."""
    if language == "python":
        function_re, class_re, block = _PYTHON_FUNCTION, _PYTHON_CLASS, _indent_block
    elif language in ("javascript", "typescript"):
        function_re, class_re, block = _SCRIPT_FUNCTION, _SCRIPT_CLASS, _brace_block
    else:
        return []

    sections = []
    for index, text in enumerate(lines):
        if function_re.match(text):
            minimum = MIN_FUNCTION_CHARS
        elif class_re.match(text):
            minimum = MIN_CLASS_CHARS
        else:
            continue
        bounds = block(lines, index)
        if bounds is None:
            continue
        code = "\n".join(lines[bounds[0]:bounds[1] + 1])
        if len(code) > minimum:
            sections.append((bounds[0], bounds[1], code))
    return sections


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _risk_id(match_type: MatchType, pattern_id: str, file_path: str, line: int) -> str:
    return f"{match_type.value}-{_slug(pattern_id)}-{file_path}-{line}"


# ============================================================================
# Scanner
# ============================================================================

class PatentScanner:
    """Heuristic patent-risk detection over source text."""

    def __init__(self, include_semantic: bool = True):
        self.include_semantic = include_semantic

    def scan_text(
        self,
        content: str,
        file_path: str,
        language: Optional[str] = None,
    ) -> List[PatentRisk]:
        """All raw findings for one file, before deduplication."""
        language = language or detect_language(file_path)
        lines = content.splitlines()
        risks: List[PatentRisk] = []
        risks.extend(self._keyword_risks(lines, file_path))
        if self.include_semantic:
            risks.extend(self._semantic_risks(lines, file_path, language))
        risks.extend(self._structural_risks(lines, file_path))
        risks.extend(self._algorithmic_risks(lines, file_path))
        return risks

    def scan_file(self, path: Union[str, Path], root: Optional[Path] = None) -> List[PatentRisk]:
        path = Path(path)
        content = path.read_text(encoding="utf-8")
        return self.scan_text(content, display_path(path, root), detect_language(path))

    def scan_files(
        self,
        paths: Iterable[Union[str, Path]],
        root: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> PatentScanResult:
        paths = [Path(p) for p in paths]
        risks: List[PatentRisk] = []
        skipped: List[Tuple[str, str]] = []
        not_scanned: List[str] = []

        for path in paths:
            label = display_path(path, root)
            if cancel_event is not None and cancel_event.is_set():
                not_scanned.append(label)
                continue
            try:
                risks.extend(self.scan_file(path, root))
            except UnicodeDecodeError as e:
                skipped.append((label, f"not valid UTF-8 text ({e.reason})"))
                logger.warning(f"Skipping {label}: not valid UTF-8 text")
            except OSError as e:
                skipped.append((label, f"unreadable: {e.strerror or e}"))
                logger.warning(f"Skipping {label}: {e}")

        ranked = self.rank(self.deduplicate(risks))
        return PatentScanResult(
            total_files=len(paths),
            risks=ranked,
            summary=self.summarize(ranked),
            recommendations=self.recommendations(ranked),
            legal_actions=self.legal_actions(ranked, now),
            skipped=skipped,
            not_scanned=not_scanned,
        )

    def scan_workspace(self, root: Union[str, Path], **kwargs) -> PatentScanResult:
        root = Path(root)
        return self.scan_files(iter_source_files(root), root if root.is_dir() else root.parent, **kwargs)

    # -- matchers --------------------------------------------------------

    def _keyword_risks(self, lines: Sequence[str], file_path: str) -> List[PatentRisk]:
        risks = []
        for pattern in KEYWORD_PATTERNS:
            for number, text in enumerate(lines, 1):
                span = next(pattern.matcher.finditer(text), None)
                if span is None:
                    continue
                risks.append(PatentRisk(
                    id=_risk_id(MatchType.HEURISTIC, pattern.id, file_path, number),
                    pattern_id=pattern.id,
                    title=pattern.name,
                    risk_level=pattern.risk_level,
                    confidence=pattern.weight,
                    match_type=MatchType.HEURISTIC,
                    line=number,
                    snippet=text.strip(),
                    description=f"Potential implementation of {pattern.name}: {span.text}",
                    recommendation=f"Review for patent infringement risk related to {pattern.name}",
                    legal_advice=pattern.legal_advice,
                    section=code_section(lines, number, file_path),
                    mitigation=tuple(keyword_mitigations(pattern.name)),
                    patent_number=pattern.patent_numbers[0],
                ))
        return risks

    def _semantic_risks(self, lines: Sequence[str], file_path: str, language: str) -> List[PatentRisk]:
        risks = []
        for start, end, code in meaningful_sections(lines, language):
            family = semantic_family(code)
            if family is None or family.score <= SEMANTIC_THRESHOLD:
                continue
            number = start + 1
            risks.append(PatentRisk(
                id=_risk_id(MatchType.SEMANTIC, family.id, file_path, number),
                pattern_id=family.id,
                title=family.name,
                risk_level=risk_from_similarity(family.score),
                confidence=family.score,
                match_type=MatchType.SEMANTIC,
                line=number,
                snippet=lines[start].strip(),
                description=family.description,
                recommendation=family.recommendation,
                legal_advice="Consult patent attorney for detailed analysis",
                section=code_section(lines, number, file_path),
                mitigation=tuple(generic_mitigations()),
                similarity_score=family.score,
            ))
        return risks

    def _structural_risks(self, lines: Sequence[str], file_path: str) -> List[PatentRisk]:
        risks = []
        for pattern in STRUCTURAL_PATTERNS:
            for number, text in enumerate(lines, 1):
                confidence = pattern.check_line(text)
                if confidence is None:
                    continue
                risks.append(PatentRisk(
                    id=_risk_id(MatchType.STRUCTURAL, pattern.id, file_path, number),
                    pattern_id=pattern.id,
                    title=pattern.name,
                    risk_level=pattern.risk_level,
                    confidence=confidence,
                    match_type=MatchType.STRUCTURAL,
                    line=number,
                    snippet=text.strip(),
                    description=pattern.description,
                    recommendation=f"Review implementation of {pattern.name} for patent compliance",
                    legal_advice="Consider alternative implementation or licensing",
                    section=code_section(lines, number, file_path),
                    mitigation=tuple(structural_mitigations(pattern.name)),
                ))
        return risks

    def _algorithmic_risks(self, lines: Sequence[str], file_path: str) -> List[PatentRisk]:
        """One finding per algorithm per file, at its first mention."""
        risks = []
        for algorithm in ALGORITHM_PATTERNS:
            number = next(
                (n for n, text in enumerate(lines, 1) if algorithm.pattern.search(text)),
                None,
            )
            if number is None:
                continue
            risks.append(PatentRisk(
                id=_risk_id(MatchType.ALGORITHMIC, algorithm.id, file_path, number),
                pattern_id=algorithm.id,
                title=algorithm.name,
                risk_level=algorithm.risk_level,
                confidence=algorithm.confidence,
                match_type=MatchType.ALGORITHMIC,
                line=number,
                snippet=lines[number - 1].strip(),
                description=algorithm.description,
                recommendation=f"Review {algorithm.name} implementation for patent licensing requirements",
                legal_advice="Immediate legal review required for algorithmic patent infringement",
                section=code_section(lines, number, file_path),
                mitigation=tuple(algorithmic_mitigations(algorithm.name)),
                patent_number=algorithm.patent_numbers[0],
            ))
        return risks

    # -- aggregation -----------------------------------------------------

    @staticmethod
    def deduplicate(risks: Iterable[PatentRisk]) -> List[PatentRisk]:
        """
        Collapse findings with the same title in the same file less than
        DEDUP_LINE_WINDOW lines apart, keeping the highest confidence.
        """
        kept: List[PatentRisk] = []
        for risk in risks:
            index = next(
                (
                    i for i, existing in enumerate(kept)
                    if existing.title == risk.title
                    and existing.file == risk.file
                    and abs(existing.line - risk.line) < DEDUP_LINE_WINDOW
                ),
                None,
            )
            if index is None:
                kept.append(risk)
            elif risk.confidence > kept[index].confidence:
                kept[index] = risk
        return kept

    @staticmethod
    def rank(risks: Iterable[PatentRisk]) -> List[PatentRisk]:
        return sorted(risks, key=lambda r: (-r.risk_level.rank, -r.confidence, r.file, r.line, r.id))

    @staticmethod
    def estimate_legal_cost(risks: Sequence[PatentRisk]) -> str:
        critical = sum(1 for r in risks if r.risk_level == Severity.CRITICAL)
        high = sum(1 for r in risks if r.risk_level == Severity.HIGH)
        cost = 25000 * critical + 10000 * high + 2000 * len(risks)
        if cost == 0:
            return "$0"
        if cost < 10000:
            return "$5,000 - $10,000"
        if cost < 50000:
            return "$10,000 - $50,000"
        if cost < 100000:
            return "$50,000 - $100,000"
        return "$100,000+"

    @staticmethod
    def urgent_actions(risks: Sequence[PatentRisk]) -> List[str]:
        actions = []
        if any(r.risk_level == Severity.CRITICAL for r in risks):
            actions.append("Stop development on critical risk areas")
            actions.append("Schedule emergency legal consultation")
        if any(r.match_type == MatchType.ALGORITHMIC for r in risks):
            actions.append("Review algorithmic implementations immediately")
        return actions

    def summarize(self, risks: Sequence[PatentRisk]) -> PatentScanSummary:
        if any(r.risk_level == Severity.CRITICAL for r in risks):
            overall = Severity.CRITICAL
        elif any(r.risk_level == Severity.HIGH for r in risks):
            overall = Severity.HIGH
        elif len(risks) > 5:
            overall = Severity.MEDIUM
        else:
            overall = Severity.LOW

        by_type: Dict[str, int] = {}
        for risk in risks:
            by_type[risk.match_type.value] = by_type.get(risk.match_type.value, 0) + 1

        return PatentScanSummary(
            overall_risk=overall,
            confidence=sum(r.confidence for r in risks) / len(risks) if risks else 0.0,
            top_risks=tuple(self.rank(risks)[:TOP_RISKS]),
            risks_by_type=by_type,
            estimated_legal_cost=self.estimate_legal_cost(risks),
            urgent_actions=tuple(self.urgent_actions(risks)),
        )

    @staticmethod
    def recommendations(risks: Sequence[PatentRisk]) -> List[str]:
        if not risks:
            return ["No patent infringement risks detected in current scan"]

        recommendations = []
        critical = sum(1 for r in risks if r.risk_level == Severity.CRITICAL)
        if critical:
            recommendations.append(f"Immediate legal review required for {critical} critical patent risks")
            recommendations.append("Consider halting affected development until risks are assessed")
        high = sum(1 for r in risks if r.risk_level == Severity.HIGH)
        if high:
            recommendations.append(f"Schedule patent attorney consultation for {high} high-risk items")
        if any(r.match_type == MatchType.ALGORITHMIC for r in risks):
            recommendations.append("Research alternative algorithms or obtain necessary licenses")
        if any(r.match_type == MatchType.SEMANTIC for r in risks):
            recommendations.append("Conduct detailed prior art research for semantic matches")
        recommendations.append("Implement patent review process for future development")
        recommendations.append("Consider patent portfolio analysis for defensive purposes")
        return recommendations

    @staticmethod
    def legal_actions(risks: Sequence[PatentRisk], now: Optional[datetime] = None) -> List[LegalAction]:
        now = now or datetime.now(timezone.utc)
        actions = []
        critical = sum(1 for r in risks if r.risk_level == Severity.CRITICAL)
        if critical:
            actions.append(LegalAction(
                type="immediate",
                description=f"Legal review of {critical} critical patent infringement risks",
                assignee="patent-attorney@company.com",
                priority=1,
                deadline=now + timedelta(hours=24),
            ))
        high = sum(1 for r in risks if r.risk_level == Severity.HIGH)
        if high:
            actions.append(LegalAction(
                type="urgent",
                description=f"Patent clearance analysis for {high} high-risk implementations",
                assignee="legal-team@company.com",
                priority=2,
                deadline=now + timedelta(days=7),
            ))
        actions.append(LegalAction(
            type="planned",
            description="Implement ongoing patent monitoring system",
            assignee="engineering-manager@company.com",
            priority=3,
        ))
        return actions

    # -- conversion ------------------------------------------------------

    @staticmethod
    def to_violations(risks: Iterable[PatentRisk]) -> List[Violation]:
        """Findings as misuse-category violations for the enforcement gate."""
        return [
            Violation(
                id=risk.id,
                rule_id=f"patent-{risk.pattern_id}",
                category=Category.MISUSE,
                severity=risk.risk_level,
                line=risk.line,
                column=0,
                message=VIOLATION_MESSAGE_PREFIX + risk.description,
                snippet=risk.snippet,
                recommendation=risk.legal_advice,
                confidence=risk.confidence,
                file_path=risk.file,
            )
            for risk in risks
        ]
