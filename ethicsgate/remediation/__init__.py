"""Remediation candidates: rule-based templates, assisted alternatives, manual guidance."""

from ethicsgate.remediation.engine import (
    PolicyComplianceCheck,
    RemediationEngine,
    RemediationResult,
    RemediationSuggestion,
    SuggestionSource,
)
from ethicsgate.remediation.templates import TEMPLATES, RemediationTemplate, template_for

__all__ = [
    "PolicyComplianceCheck", "RemediationEngine", "RemediationResult",
    "RemediationSuggestion", "SuggestionSource",
    "TEMPLATES", "RemediationTemplate", "template_for",
]
