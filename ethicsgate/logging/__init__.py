"""Redaction of secrets in snippets, reasons and log records."""

from ethicsgate.logging.redaction import LogRedactor, RedactingFilter, get_redactor

__all__ = ["LogRedactor", "RedactingFilter", "get_redactor"]
