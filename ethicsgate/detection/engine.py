"""
EthicsGate Detection Engine

Scans source text line by line against the active pattern catalogue and
produces classified violations plus per-category risk metrics.

Scoring:
- Per match confidence starts at 0.8 and is bumped for long matches,
  production file names and language-specific signals
- Each rule adds weight x severity multiplier x mean confidence x
  log2(matches + 1) to its category, capped at 1.0
- Category risks get contextual multipliers (test files, language,
  sensitive project domain)
- The overall score is a weighted harmonic-style combination where any
  category near 1.0 drives the score toward 0
"""

import logging
import math
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ethicsgate.detection.catalogue import PatternCatalogue
from ethicsgate.detection.language import (
    detect_language,
    is_comment_line,
    is_production_path,
    is_test_path,
)
from ethicsgate.detection.matcher import MatchSpan
from ethicsgate.models import (
    CATEGORY_WEIGHTS,
    SEVERITY_MULTIPLIERS,
    AnalysisContext,
    AnalysisResult,
    Category,
    RiskMetrics,
    Rule,
    Violation,
    clamp01,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.8
LONG_MATCH_LENGTH = 10
OVERALL_EPSILON = 0.001

# Rules suppressed in test/spec files when context dependent
TEST_SUPPRESSED_RULES = frozenset({"surveillance-location", "surveillance-camera"})

# Lines mentioning these are treated as illustrative, not production code
EXCLUSION_MARKERS = ("example", "demo")

# Rule exceptions match whole path segments and whole words, never substrings
_PATH_SEPARATORS = re.compile(r"[\\/._-]+")
_WORD = re.compile(r"[a-z0-9]+")

SENSITIVE_DOMAINS = ("financial", "healthcare")


@dataclass(frozen=True)
class _Match:
    rule: Rule
    order: int
    line: int
    span: MatchSpan
    snippet: str
    confidence: float


@dataclass
class ScanBatch:
    """Aggregate outcome of a multi-file scan."""
    results: List[AnalysisResult] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    not_scanned: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def files_scanned(self) -> int:
        return len(self.results)

    @property
    def violations(self) -> List[Violation]:
        """All violations in canonical (file, line, column) order."""
        collected = [v for r in self.results for v in r.violations]
        return sorted(collected, key=lambda v: v.sort_key)

    def to_dict(self) -> Dict:
        return {
            "files_scanned": self.files_scanned,
            "cancelled": self.cancelled,
            "skipped": [{"file": p, "reason": r} for p, r in self.skipped],
            "not_scanned": list(self.not_scanned),
            "results": [r.to_dict() for r in self.results],
        }


class DetectionEngine:
    """Pattern-based violation detection and risk aggregation."""

    def __init__(self, catalogue: Optional[PatternCatalogue] = None):
        self._catalogue = catalogue if catalogue is not None else PatternCatalogue.load_builtin()

    @property
    def catalogue(self) -> PatternCatalogue:
        return self._catalogue

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def analyze(self, context: AnalysisContext) -> AnalysisResult:
        """Scan one file's content and compute its risk metrics."""
        matches = self._collect_matches(context)
        violations = tuple(self._to_violation(m, context) for m in matches)

        risks: Dict[Category, float] = {c: 0.0 for c in Category}
        by_rule: Dict[str, List[_Match]] = {}
        for match in matches:
            by_rule.setdefault(match.rule.id, []).append(match)
        for rule in self._catalogue.enabled_rules():
            rule_matches = by_rule.get(rule.id)
            if not rule_matches:
                continue
            increase = rule_risk_increase(rule, [m.confidence for m in rule_matches])
            risks[rule.category] = min(1.0, risks[rule.category] + increase)

        risks = apply_context_adjustments(risks, context)
        metrics = RiskMetrics(
            surveillance=risks[Category.SURVEILLANCE],
            discrimination=risks[Category.DISCRIMINATION],
            privacy=risks[Category.PRIVACY],
            misuse=risks[Category.MISUSE],
            manipulation=risks[Category.MANIPULATION],
            overall_score=overall_score(risks),
        )
        return AnalysisResult(context=context, metrics=metrics, violations=violations)

    def matching_rules(self, context: AnalysisContext) -> List[Rule]:
        """Distinct enabled rules that trip on the given content."""
        seen: Dict[str, Rule] = {}
        for match in self._collect_matches(context):
            seen.setdefault(match.rule.id, match.rule)
        return list(seen.values())

    def scan_file(
        self,
        path: Union[str, Path],
        root: Optional[Path] = None,
        project_context: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> AnalysisResult:
        """Read and analyze a file. Raises OSError/UnicodeDecodeError when unreadable."""
        path = Path(path)
        content = path.read_text(encoding="utf-8")
        return self.analyze(AnalysisContext(
            content=content,
            file_name=display_path(path, root),
            language=detect_language(path),
            project_context=project_context,
            environment=environment,
        ))

    # ------------------------------------------------------------------
    # Many files
    # ------------------------------------------------------------------

    def scan_files(
        self,
        paths: Iterable[Union[str, Path]],
        root: Optional[Path] = None,
        project_context: Optional[str] = None,
        workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanBatch:
        """
        Scan files concurrently.

        Unreadable files are logged and listed in ``skipped`` with a reason;
        they never abort the batch and are not counted as scanned. Setting
        ``cancel_event`` stops the batch after the files already in progress.
        """
        tasks = []
        for path in paths:
            path = Path(path)
            label = display_path(path, root)
            tasks.append((label, lambda p=path: self.scan_file(p, root, project_context)))
        return self._run(tasks, workers, cancel_event)

    def analyze_many(
        self,
        contexts: Sequence[AnalysisContext],
        workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanBatch:
        """Analyze already-loaded contents concurrently."""
        tasks = [(c.file_name, lambda c=c: self.analyze(c)) for c in contexts]
        return self._run(tasks, workers, cancel_event)

    def _run(
        self,
        tasks: List[Tuple[str, Callable[[], AnalysisResult]]],
        workers: int,
        cancel_event: Optional[threading.Event],
    ) -> ScanBatch:
        batch = ScanBatch()
        if not tasks:
            return batch

        def run_one(label: str, task: Callable[[], AnalysisResult]):
            if cancel_event is not None and cancel_event.is_set():
                return label, None, None
            try:
                return label, task(), None
            except UnicodeDecodeError as e:
                return label, None, f"not valid UTF-8 text ({e.reason})"
            except OSError as e:
                return label, None, f"unreadable: {e.strerror or e}"

        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = [pool.submit(run_one, label, task) for label, task in tasks]
            outcomes = [f.result() for f in futures]

        for label, result, reason in outcomes:
            if result is not None:
                batch.results.append(result)
            elif reason is not None:
                logger.warning(f"Skipping {label}: {reason}")
                batch.skipped.append((label, reason))
            else:
                batch.not_scanned.append(label)

        if batch.not_scanned:
            batch.cancelled = True
            logger.info(f"Scan cancelled; {len(batch.not_scanned)} file(s) not scanned")

        batch.results.sort(key=lambda r: r.file_path)
        batch.skipped.sort()
        batch.not_scanned.sort()
        return batch

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _collect_matches(self, context: AnalysisContext) -> List[_Match]:
        rules = [
            (order, rule) for order, rule in enumerate(self._catalogue.enabled_rules())
            if _applies_to_environment(rule, context.environment)
        ]
        test_file = is_test_path(context.file_name)
        file_lower = context.file_name.lower()

        best: Dict[Tuple[int, int, Category], _Match] = {}
        for index, raw_line in enumerate(context.content.splitlines()):
            line_lower = raw_line.lower()
            comment = is_comment_line(raw_line)
            for order, rule in rules:
                if rule.context_dependent and (
                    _suppressed(rule, comment, test_file, line_lower)
                    or _has_exception(rule, file_lower, line_lower)
                ):
                    continue
                for span in rule.matcher.finditer(raw_line):
                    match = _Match(
                        rule=rule,
                        order=order,
                        line=index + 1,
                        span=span,
                        snippet=raw_line.strip(),
                        confidence=match_confidence(span, rule, context),
                    )
                    key = (match.line, span.start, rule.category)
                    current = best.get(key)
                    # One violation per location and category; stronger rule wins
                    if current is None or _outranks(match, current):
                        best[key] = match

        return sorted(best.values(), key=lambda m: (m.line, m.span.start, m.order))

    @staticmethod
    def _to_violation(match: _Match, context: AnalysisContext) -> Violation:
        rule = match.rule
        return Violation(
            id=f"{rule.id}@{context.file_name}:{match.line}:{match.span.start}",
            rule_id=rule.id,
            category=rule.category,
            severity=rule.severity,
            line=match.line,
            column=match.span.start,
            message=rule.description,
            snippet=match.snippet,
            recommendation=rule.recommendation,
            confidence=match.confidence,
            file_path=context.file_name,
        )


# ----------------------------------------------------------------------
# Scoring helpers
# ----------------------------------------------------------------------


def match_confidence(span: MatchSpan, rule: Rule, context: AnalysisContext) -> float:
    confidence = BASE_CONFIDENCE
    if span.length > LONG_MATCH_LENGTH:
        confidence += 0.1
    if is_production_path(context.file_name):
        confidence += 0.1
    if context.language == "python" and "\\(" in rule.pattern:
        confidence += 0.05
    return min(1.0, confidence)


def rule_risk_increase(rule: Rule, confidences: Sequence[float]) -> float:
    """Risk a single rule adds to its category for the given matches."""
    if not confidences:
        return 0.0
    average = sum(confidences) / len(confidences)
    increase = (
        rule.weight
        * SEVERITY_MULTIPLIERS[rule.severity]
        * average
        * math.log2(len(confidences) + 1)
    )
    return min(1.0, increase)


def apply_context_adjustments(
    risks: Dict[Category, float], context: AnalysisContext
) -> Dict[Category, float]:
    adjusted = dict(risks)
    if is_test_path(context.file_name):
        for category in adjusted:
            adjusted[category] *= 0.5

    language = (context.language or "").lower()
    if language == "python":
        adjusted[Category.PRIVACY] *= 1.1
    elif language in ("javascript", "typescript"):
        adjusted[Category.SURVEILLANCE] *= 1.1

    project = (context.project_context or "").lower()
    if any(domain in project for domain in SENSITIVE_DOMAINS):
        adjusted[Category.PRIVACY] *= 1.2
        adjusted[Category.DISCRIMINATION] *= 1.3

    return {c: clamp01(v) for c, v in adjusted.items()}


def overall_score(risks: Dict[Category, float]) -> float:
    """Weighted harmonic-style combination; 1.0 means no risk."""
    total_weight = sum(CATEGORY_WEIGHTS.values())
    denominator = sum(
        weight / (1.0 - clamp01(risks.get(category, 0.0)) + OVERALL_EPSILON)
        for category, weight in CATEGORY_WEIGHTS.items()
    )
    return clamp01(total_weight / denominator)


def display_path(path: Path, root: Optional[Path]) -> str:
    """Path as shown in reports: relative to root when possible, POSIX separators."""
    if root is not None:
        try:
            return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
        except ValueError:
            pass
    return Path(path).as_posix()


def format_report(result: AnalysisResult) -> str:
    """Plain-text analysis report for one file."""
    metrics = result.metrics
    lines = [
        f"Ethical Analysis Report for {result.file_path}",
        "=" * 50,
        "",
        f"Overall Ethics Score: {metrics.overall_score * 100:.1f}%",
        "",
        "Risk Breakdown:",
    ]
    for category in Category:
        lines.append(f"  {category.value.capitalize():<15} {metrics.get(category) * 100:5.1f}%")
    lines.append("")

    if not result.violations:
        lines.append("No ethical violations detected.")
        return "\n".join(lines)

    lines.append(f"Violations Found ({len(result.violations)}):")
    lines.append("-" * 30)
    for number, v in enumerate(result.violations, 1):
        lines.append(f"{number}. [{v.severity.value.upper()}] Line {v.line}")
        lines.append(f"   {v.message}")
        lines.append(f"   Code: {v.snippet}")
        lines.append(f"   Recommendation: {v.recommendation}")
        lines.append(f"   Confidence: {v.confidence * 100:.1f}%")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _applies_to_environment(rule: Rule, environment: Optional[str]) -> bool:
    if not rule.contexts or not environment:
        return True
    return environment.lower() in (c.lower() for c in rule.contexts)


def _has_exception(rule: Rule, file_lower: str, line_lower: str) -> bool:
    """True when a rule exception names a path segment or a word on the line."""
    segments = set(_PATH_SEPARATORS.split(file_lower))
    words = set(_WORD.findall(line_lower))
    for marker in rule.exceptions:
        marker = marker.lower()
        if not marker:
            continue
        # "test" also covers the plural directory name "tests"
        if marker in segments or marker + "s" in segments or marker in words:
            return True
    return False


def _suppressed(rule: Rule, comment: bool, test_file: bool, line_lower: str) -> bool:
    if comment:
        return True
    if test_file and rule.id in TEST_SUPPRESSED_RULES:
        return True
    return any(marker in line_lower for marker in EXCLUSION_MARKERS)


def _outranks(candidate: _Match, current: _Match) -> bool:
    if candidate.rule.severity != current.rule.severity:
        return candidate.rule.severity > current.rule.severity
    return candidate.order < current.order
