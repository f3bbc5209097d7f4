"""
Rule-based source transforms, one per violation category.

Each template rewrites the offending snippet with regular expressions.
A template that leaves the snippet unchanged produces no candidate.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ethicsgate.models import Category

_SCRIPT_LANGUAGES = ("javascript", "typescript")

_NATIONALITY_CONDITION = re.compile(
    r"if\s*\(\s*(user|person|applicant)\.(?:nationality|country|citizenship)\s*[!=<>]+\s*[\"'][^\"']*[\"']\s*\)",
    re.IGNORECASE,
)
_NATIONALITY_FILTER = re.compile(
    r"\.filter\s*\(\s*(\w+)\s*=>\s*\w+\.(?:nationality|country|citizenship)\s*[!=<>]+\s*[\"'][^\"']*[\"']\s*\)",
    re.IGNORECASE,
)

_CONSENT_WRAPPERS = (
    (re.compile(r"navigator\.geolocation\.getCurrentPosition\s*\("), "requestLocationWithConsent("),
    (re.compile(r"navigator\.geolocation\.watchPosition\s*\("), "watchLocationWithConsent("),
    (re.compile(r"navigator\.mediaDevices\.getUserMedia\s*\("), "requestMediaWithConsent("),
)

_SENSITIVE_ASSIGNMENT = re.compile(
    r"\b(ssn|socialSecurityNumber|passport|password|creditCard|driverLicense)(\s*[:=]\s*)([^;,}\n]+?)(\s*[;,}]|\s*$)",
    re.IGNORECASE,
)

_AUTH_BYPASS = re.compile(
    r"if\s*\(\s*(?:user|username|email)\s*===?\s*[\"'](?:admin|root|backdoor|debug)[\"']\s*(?:&&[^)]*)*\s*\)\s*\{[^}]*(?:bypass|skip|allow)[^}]*\}",
    re.IGNORECASE,
)
_UNTRUSTED_EVAL = re.compile(
    r"(?:eval|exec|system|shell_exec)\s*\(\s*(?:\$_|request\.|params\.|input)[^)]*\)+",
    re.IGNORECASE,
)

_HIDDEN_COST = re.compile(
    r"(hidden|invisible|opacity:\s*0(?![.\d])|display:\s*none)(?=.*(?:fee|charge|cost|price))",
    re.IGNORECASE,
)
_VISIBLE_REPLACEMENTS = {
    "hidden": "visible",
    "invisible": "visible",
}


def _comment(language: str, text: str) -> str:
    prefix = "#" if language in ("python", "ruby") else "//"
    return f"{prefix} {text}"


def remove_nationality_filter(code: str, language: str) -> str:
    check = "not is_eligible({0})" if language == "python" else "!isEligible({0})"
    fixed = _NATIONALITY_CONDITION.sub(lambda m: f"if ({check.format(m.group(1))})", code)
    predicate = "is_eligible({0})" if language == "python" else "isEligible({0})"
    return _NATIONALITY_FILTER.sub(
        lambda m: f".filter({m.group(1)} => {predicate.format(m.group(1))})", fixed
    )


def add_consent_request(code: str, language: str) -> str:
    fixed = code
    for pattern, wrapper in _CONSENT_WRAPPERS:
        fixed = pattern.sub(wrapper, fixed)
    return fixed


def encrypt_sensitive_data(code: str, language: str) -> str:
    if language == "python":
        call, suffix = "encrypt_pii", "_encrypted"
    elif language in _SCRIPT_LANGUAGES:
        call, suffix = "await encryptPII", "Encrypted"
    else:
        call, suffix = "encryptPII", "Encrypted"
    return _SENSITIVE_ASSIGNMENT.sub(
        lambda m: f"{m.group(1)}{suffix}{m.group(2)}{call}({m.group(3).strip()}){m.group(4)}",
        code,
    )


def remove_auth_bypass(code: str, language: str) -> str:
    fixed = _AUTH_BYPASS.sub(
        _comment(language, "Removed hardcoded authentication bypass - implement proper authentication"),
        code,
    )
    replacement = "None" if language == "python" else "undefined /* never evaluate untrusted input */"
    return _UNTRUSTED_EVAL.sub(replacement, fixed)


def make_fees_transparent(code: str, language: str) -> str:
    def reveal(match: "re.Match") -> str:
        token = match.group(1).lower()
        if token.startswith("opacity"):
            return "opacity: 1"
        if token.startswith("display"):
            return "display: block"
        return _VISIBLE_REPLACEMENTS.get(token, "visible")

    return _HIDDEN_COST.sub(reveal, code)


@dataclass(frozen=True)
class RemediationTemplate:
    id: str
    category: Category
    confidence: float
    risk_reduction: float
    effort: str
    explanation: str
    transform: Callable[[str, str], str]

    def apply(self, code: str, language: str = "unknown") -> Optional[str]:
        """Transformed code, or None when the template does not apply."""
        fixed = self.transform(code, language)
        return None if fixed == code else fixed


TEMPLATES: Dict[Category, RemediationTemplate] = {
    Category.DISCRIMINATION: RemediationTemplate(
        id="remove-nationality-filter",
        category=Category.DISCRIMINATION,
        confidence=0.9,
        risk_reduction=0.95,
        effort="medium",
        explanation=(
            "Replace the nationality-based condition with an eligibility check "
            "built on legitimate business criteria"
        ),
        transform=remove_nationality_filter,
    ),
    Category.SURVEILLANCE: RemediationTemplate(
        id="add-consent-request",
        category=Category.SURVEILLANCE,
        confidence=0.85,
        risk_reduction=0.8,
        effort="medium",
        explanation=(
            "Route capability access through a helper that asks for explicit "
            "user consent before touching location or media devices"
        ),
        transform=add_consent_request,
    ),
    Category.PRIVACY: RemediationTemplate(
        id="encrypt-sensitive-data",
        category=Category.PRIVACY,
        confidence=0.9,
        risk_reduction=0.9,
        effort="low",
        explanation="Encrypt sensitive data before it is stored or assigned",
        transform=encrypt_sensitive_data,
    ),
    Category.MISUSE: RemediationTemplate(
        id="remove-auth-bypass",
        category=Category.MISUSE,
        confidence=0.95,
        risk_reduction=0.95,
        effort="low",
        explanation=(
            "Remove hardcoded authentication bypasses and dynamic evaluation "
            "of untrusted input"
        ),
        transform=remove_auth_bypass,
    ),
    Category.MANIPULATION: RemediationTemplate(
        id="make-fees-transparent",
        category=Category.MANIPULATION,
        confidence=0.8,
        risk_reduction=0.7,
        effort="low",
        explanation="Make all fees and charges visible and clearly disclosed to users",
        transform=make_fees_transparent,
    ),
}


def template_for(category: Category) -> Optional[RemediationTemplate]:
    return TEMPLATES.get(Category(category))
