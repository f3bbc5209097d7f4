"""Heuristic patent-risk scanning."""

from ethicsgate.patent.catalogue import MatchType, MitigationStrategy
from ethicsgate.patent.scanner import (
    CodeSection,
    LegalAction,
    PatentRisk,
    PatentScanner,
    PatentScanResult,
    PatentScanSummary,
)

__all__ = [
    "MatchType", "MitigationStrategy",
    "CodeSection", "LegalAction", "PatentRisk", "PatentScanner",
    "PatentScanResult", "PatentScanSummary",
]
