"""
Patent-risk catalogue.

Four kinds of matcher, all heuristic:

- keyword patterns for well-known interaction patents
- structural checkers that count design-pattern vocabulary per line
- a "semantic" check over function/class bodies, which is a keyword
  family test and not real similarity analysis
- algorithm-name matchers for historically patent-encumbered techniques
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from ethicsgate.detection.matcher import RegexMatcher
from ethicsgate.models import Severity


class MatchType(str, Enum):
    HEURISTIC = "heuristic"
    SEMANTIC = "semantic"
    STRUCTURAL = "structural"
    ALGORITHMIC = "algorithmic"


@dataclass(frozen=True)
class MitigationStrategy:
    type: str  # avoidance, licensing, redesign, prior_art
    description: str
    complexity: str
    time_estimate: str
    legal_risk: str

    def to_dict(self):
        return {
            "type": self.type,
            "description": self.description,
            "complexity": self.complexity,
            "time_estimate": self.time_estimate,
            "legal_risk": self.legal_risk,
        }


# ============================================================================
# Keyword patterns
# ============================================================================

@dataclass(frozen=True)
class PatentPattern:
    id: str
    name: str
    description: str
    patent_numbers: Tuple[str, ...]
    risk_level: Severity
    matcher: RegexMatcher
    weight: float
    exemptions: Tuple[str, ...] = ()

    @property
    def legal_advice(self) -> str:
        return (
            f"Potential infringement of patent {', '.join(self.patent_numbers)}: {self.name}. "
            "Recommend immediate legal consultation for clearance analysis."
        )


KEYWORD_PATTERNS: Tuple[PatentPattern, ...] = (
    PatentPattern(
        id="one-click-purchase",
        name="One-Click Purchase System",
        description="Single-action online purchase mechanism",
        patent_numbers=("US5960411",),
        risk_level=Severity.HIGH,
        matcher=RegexMatcher(r"\b(?:one.*click|single.*click).*\b(?:purchase|buy|order)\b", "i"),
        weight=0.8,
        exemptions=("Shopping cart implementations", "Multi-step checkout"),
    ),
    PatentPattern(
        id="progress-bar",
        name="Progress Bar During Download",
        description="Visual progress indicator during file transfer",
        patent_numbers=("US6389467",),
        risk_level=Severity.MEDIUM,
        matcher=RegexMatcher(r"\b(?:progress.*bar|download.*progress)\b", "i"),
        weight=0.6,
        exemptions=("Generic progress indicators", "Simple loading bars"),
    ),
    PatentPattern(
        id="auto-complete",
        name="Auto-Complete Search Suggestions",
        description="Automatic completion of search queries",
        patent_numbers=("US7788274",),
        risk_level=Severity.MEDIUM,
        matcher=RegexMatcher(r"\b(?:auto.*complete|auto.*suggest|typeahead)\b", "i"),
        weight=0.7,
        exemptions=("Basic text completion", "Static suggestion lists"),
    ),
)


# ============================================================================
# Structural checkers
# ============================================================================

@dataclass(frozen=True)
class StructuralPattern:
    """Confidence is min(hits x step, 1) over the signals found on a line."""
    id: str
    name: str
    description: str
    risk_level: Severity
    signals: Tuple[Pattern, ...]
    step: float

    def check_line(self, line: str) -> Optional[float]:
        hits = sum(1 for signal in self.signals if signal.search(line))
        if not hits:
            return None
        return min(hits * self.step, 1.0)


def _signals(*patterns: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


STRUCTURAL_PATTERNS: Tuple[StructuralPattern, ...] = (
    StructuralPattern(
        id="observer-pattern",
        name="Observer Pattern Implementation",
        description="Potential implementation of patented observer pattern variant",
        risk_level=Severity.MEDIUM,
        signals=_signals(
            r"\b(?:observer|observable|subscribe|unsubscribe|notify)\b",
            r"\b(?:addEventListener|removeEventListener)\b",
            r"\b(?:on|off|emit|trigger)\b.*\b(?:event|listener)\b",
        ),
        step=0.3,
    ),
    StructuralPattern(
        id="caching-strategy",
        name="Caching Strategy",
        description="Potential implementation of patented caching algorithm",
        risk_level=Severity.MEDIUM,
        signals=_signals(
            r"\b(?:cache|memoize|lru|ttl)\b",
            r"\b(?:get|set|put|evict).*\b(?:cache|cached)\b",
            r"\b(?:expir|invalid|refresh).*\b(?:cache)\b",
        ),
        step=0.4,
    ),
    StructuralPattern(
        id="compression-algorithm",
        name="Compression Algorithm",
        description="Potential implementation of patented compression technique",
        risk_level=Severity.HIGH,
        signals=_signals(
            r"\b(?:compress|decompress|zip|unzip|gzip|deflate|inflate)\b",
            r"\b(?:huffman|lz77|lz78|lzw|arithmetic)\b",
            r"\b(?:encode|decode).*\b(?:length|run|dictionary)\b",
        ),
        step=0.4,
    ),
    StructuralPattern(
        id="encryption-method",
        name="Encryption Method",
        description="Potential implementation of patented encryption method",
        risk_level=Severity.CRITICAL,
        signals=_signals(
            r"\b(?:encrypt|decrypt|cipher|decipher)\b",
            r"\b(?:aes|des|rsa|ecc|sha|md5)\b",
            r"\b(?:public.*key|private.*key|symmetric|asymmetric)\b",
            r"\b(?:hash|digest|signature|certificate)\b",
        ),
        step=0.4,
    ),
)


# ============================================================================
# Algorithm names
# ============================================================================

@dataclass(frozen=True)
class AlgorithmPattern:
    id: str
    name: str
    description: str
    patent_numbers: Tuple[str, ...]
    risk_level: Severity
    pattern: Pattern
    confidence: float = 0.8


ALGORITHM_PATTERNS: Tuple[AlgorithmPattern, ...] = (
    AlgorithmPattern(
        id="rsa-algorithm",
        name="RSA Algorithm",
        description="Potential RSA encryption implementation",
        patent_numbers=("US4405829",),
        risk_level=Severity.CRITICAL,
        pattern=re.compile(r"\b(?:rsa|rivest|shamir|adleman)\b", re.IGNORECASE),
    ),
    AlgorithmPattern(
        id="lzw-compression",
        name="LZW Compression",
        description="Potential LZW compression implementation",
        patent_numbers=("US4558302",),
        risk_level=Severity.HIGH,
        pattern=re.compile(r"\b(?:lzw|lempel|ziv|welch)\b", re.IGNORECASE),
    ),
    AlgorithmPattern(
        id="gif-image-format",
        name="GIF Image Format",
        description="Potential GIF compression implementation",
        patent_numbers=("US4558302",),
        risk_level=Severity.MEDIUM,
        pattern=re.compile(r"\bgif\b.*\b(?:compress|decompress|encode|decode)\b", re.IGNORECASE),
    ),
    AlgorithmPattern(
        id="mp3-audio-encoding",
        name="MP3 Audio Encoding",
        description="Potential MP3 encoding implementation",
        patent_numbers=("Multiple",),
        risk_level=Severity.CRITICAL,
        pattern=re.compile(r"\b(?:mp3|mpeg.*audio|psychoacoustic)\b", re.IGNORECASE),
    ),
)


# ============================================================================
# Semantic heuristic
# ============================================================================

@dataclass(frozen=True)
class SemanticFamily:
    id: str
    name: str
    description: str
    recommendation: str
    pattern: Pattern
    score: float


# Checked in order; the first family that matches a section wins
SEMANTIC_FAMILIES: Tuple[SemanticFamily, ...] = (
    SemanticFamily(
        id="encryption-algorithm",
        name="Encryption Algorithm",
        description="Potential cryptographic implementation",
        recommendation="Review for patent-protected encryption methods",
        pattern=re.compile(r"\b(?:encrypt|decrypt|cipher|key|rsa|aes)\b", re.IGNORECASE),
        score=0.8,
    ),
    SemanticFamily(
        id="compression-algorithm",
        name="Compression Algorithm",
        description="Potential compression algorithm implementation",
        recommendation="Verify compression method is not patent-protected",
        pattern=re.compile(r"\b(?:compress|decompress|zip|gzip|huffman|lzw)\b", re.IGNORECASE),
        score=0.7,
    ),
    SemanticFamily(
        id="user-interface-patent",
        name="User Interface Patent",
        description="Potential UI/UX patent implementation",
        recommendation="Review for interface patent compliance",
        pattern=re.compile(r"\b(?:one.*click|progress.*bar|auto.*complete)\b", re.IGNORECASE),
        score=0.6,
    ),
)

# Sections must score strictly above this to be reported
SEMANTIC_THRESHOLD = 0.7
MIN_FUNCTION_CHARS = 100
MIN_CLASS_CHARS = 200


def semantic_family(code: str) -> Optional[SemanticFamily]:
    for family in SEMANTIC_FAMILIES:
        if family.pattern.search(code):
            return family
    return None


def risk_from_similarity(score: float) -> Severity:
    if score >= 0.9:
        return Severity.CRITICAL
    if score >= 0.8:
        return Severity.HIGH
    if score >= 0.7:
        return Severity.MEDIUM
    return Severity.LOW


# ============================================================================
# Mitigation strategies
# ============================================================================

def keyword_mitigations(name: str) -> List[MitigationStrategy]:
    return [
        MitigationStrategy("avoidance", f"Redesign implementation to avoid {name} patent claims",
                           "high", "2-4 weeks", "low"),
        MitigationStrategy("licensing", f"Obtain license for {name} patent",
                           "medium", "4-8 weeks", "low"),
        MitigationStrategy("prior_art", "Research prior art to challenge patent validity",
                           "high", "8-12 weeks", "medium"),
    ]


def generic_mitigations() -> List[MitigationStrategy]:
    return [
        MitigationStrategy("avoidance", "Implement alternative approach to avoid potential infringement",
                           "medium", "1-3 weeks", "low"),
        MitigationStrategy("licensing", "Investigate licensing options if patent exists",
                           "medium", "2-6 weeks", "low"),
    ]


def structural_mitigations(name: str) -> List[MitigationStrategy]:
    return [
        MitigationStrategy("redesign", f"Refactor {name} to use non-infringing design pattern",
                           "medium", "1-2 weeks", "low"),
        MitigationStrategy("avoidance", f"Replace {name} with alternative implementation",
                           "high", "2-4 weeks", "low"),
    ]


def algorithmic_mitigations(name: str) -> List[MitigationStrategy]:
    return [
        MitigationStrategy("licensing", f"Obtain commercial license for {name}",
                           "low", "2-8 weeks", "low"),
        MitigationStrategy("avoidance", f"Replace {name} with non-patented alternative",
                           "high", "4-12 weeks", "low"),
        MitigationStrategy("prior_art", f"Research {name} patent validity and prior art",
                           "high", "6-16 weeks", "medium"),
    ]
