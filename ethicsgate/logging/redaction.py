"""
EthicsGate Redaction

Matched lines frequently contain exactly what a rule flagged: hardcoded
passwords, tokens, connection strings, personal data. Anything that leaves
the process (log records, exported reports, CLI output) passes through
LogRedactor first.
"""

import logging
import re
import threading
from typing import Any, Dict, List, Optional, Pattern, Tuple

REDACTED = "***REDACTED***"


class LogRedactor:
    """Replaces credentials and personal data in free text."""

    REDACTION_PATTERNS: List[Tuple[str, Pattern, str]] = [
        ("api_key", re.compile(
            r'(?i)(api[_-]?key|apikey|secret[_-]?key)([\s:=]+)[\'"]?([A-Za-z0-9_-]{16,})[\'"]?'
        ), r'\1\2' + REDACTED),

        ("aws_key", re.compile(
            r'((?:A3T[A-Z0-9]|AKIA|ABIA|ACCA|ASIA)[A-Z0-9]{16})'
        ), '***AWS_KEY_REDACTED***'),

        ("bearer", re.compile(
            r'(?i)(bearer)\s+([A-Za-z0-9_.-]{20,})'
        ), r'\1 ' + REDACTED),

        ("jwt", re.compile(
            r'(eyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*)'
        ), '***JWT_REDACTED***'),

        ("github", re.compile(
            r'(gh[pousr]_[A-Za-z0-9_]{36,})'
        ), '***GITHUB_TOKEN_REDACTED***'),

        # Quoted literal assigned to a credential-like name, any length
        ("password", re.compile(
            r'(?i)\b(password|passwd|pwd|secret|token)(\s*[:=]+\s*)([\'"])([^\'"\n]+)\3'
        ), r'\1\2\3' + REDACTED + r'\3'),

        ("connection_string", re.compile(
            r'(?i)(mongodb|postgres(?:ql)?|mysql|redis|amqp)://([^:/\s]+):([^@\s]+)@'
        ), r'\1://\2:' + REDACTED + '@'),

        ("private_key", re.compile(
            r'(-----BEGIN (?:RSA |DSA |EC |OPENSSH )?PRIVATE KEY-----[\s\S]*?-----END (?:RSA |DSA |EC |OPENSSH )?PRIVATE KEY-----)'
        ), '***PRIVATE_KEY_REDACTED***'),

        ("email", re.compile(
            r'([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})'
        ), '***EMAIL_REDACTED***'),

        ("credit_card", re.compile(
            r'\b([0-9]{4}[- ]?[0-9]{4}[- ]?[0-9]{4}[- ]?[0-9]{4})\b'
        ), '***CARD_REDACTED***'),

        ("ssn", re.compile(
            r'\b(\d{3}-\d{2}-\d{4})\b'
        ), '***SSN_REDACTED***'),
    ]

    SENSITIVE_KEYS = {
        'password', 'passwd', 'pwd', 'secret', 'token', 'api_key', 'apikey',
        'access_key', 'secret_key', 'private_key', 'credential', 'authorization',
    }

    def __init__(self, enabled: bool = True, keep_emails: bool = False):
        self.enabled = enabled
        self.keep_emails = keep_emails

    def redact_string(self, text: str) -> str:
        if not self.enabled or not text:
            return text

        result = text
        for name, pattern, replacement in self.REDACTION_PATTERNS:
            if name == "email" and self.keep_emails:
                continue
            result = pattern.sub(replacement, result)
        return result

    def redact_dict(self, data: Dict[str, Any], depth: int = 0) -> Dict[str, Any]:
        """
        Redact a report or violation dictionary.

        Values under credential-like keys are replaced wholesale; strings
        elsewhere go through pattern redaction. Recursion stops at depth 10.
        """
        if not self.enabled or not data or depth > 10:
            return data

        result: Dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(sensitive in key_lower for sensitive in self.SENSITIVE_KEYS):
                result[key] = REDACTED
            else:
                result[key] = self._redact_value(value, depth)
        return result

    def _redact_value(self, value: Any, depth: int) -> Any:
        if isinstance(value, str):
            return self.redact_string(value)
        if isinstance(value, dict):
            return self.redact_dict(value, depth + 1)
        if isinstance(value, (list, tuple)):
            return [self._redact_value(item, depth + 1) for item in value]
        return value


class RedactingFilter(logging.Filter):
    """Logging filter that rewrites record messages through a LogRedactor."""

    def __init__(self, redactor: Optional[LogRedactor] = None):
        super().__init__()
        self.redactor = redactor or get_redactor()

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.redactor.redact_string(record.getMessage())
        record.args = None
        return True


_redactor: Optional[LogRedactor] = None
_redactor_lock = threading.Lock()


def get_redactor(enabled: bool = True) -> LogRedactor:
    """Get the shared redactor instance."""
    global _redactor
    if _redactor is None:
        with _redactor_lock:
            if _redactor is None:
                _redactor = LogRedactor(enabled=enabled)
    return _redactor
