#!/usr/bin/env python3
"""
Tests for ethicsgate.cli_helpers module.

Tests shared CLI utilities:
- Status message functions
- Command example formatting
- Logging setup with redaction
- Runtime wiring from configuration, policies and team files
"""

import logging
import sys
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from rich.console import Console

sys.path.insert(0, str(Path(__file__).parent.parent))

pytestmark = pytest.mark.cli

from ethicsgate.cli_helpers import (
    build_examples_epilog,
    build_runtime,
    format_command_example,
    format_severity,
    print_error,
    print_success,
    print_warning,
    setup_logging,
)
from ethicsgate.config.manager import ConfigError
from ethicsgate.logging.redaction import RedactingFilter
from ethicsgate.models import EnforcementMode, Severity


def _make_test_console():
    """Create a Console that writes to a StringIO buffer for capture."""
    buf = StringIO()
    return Console(file=buf, force_terminal=False, width=120), buf


class TestPrintFunctions:

    def test_print_success(self):
        con, buf = _make_test_console()
        with patch("ethicsgate.cli_helpers.console", con):
            print_success("Installed pre-commit hook")
        assert "✓" in buf.getvalue()
        assert "Installed pre-commit hook" in buf.getvalue()

    def test_print_warning(self):
        con, buf = _make_test_console()
        with patch("ethicsgate.cli_helpers.console", con):
            print_warning("Skipped bad.js")
        assert "⚠" in buf.getvalue()

    def test_print_error_with_hint(self):
        con, buf = _make_test_console()
        with patch("ethicsgate.cli_helpers.console", con):
            print_error("Bad config", "Check .ethicsgate.yaml")
        output = buf.getvalue()
        assert "✗" in output
        assert "Hint: Check .ethicsgate.yaml" in output

    def test_markup_is_escaped(self):
        con, buf = _make_test_console()
        with patch("ethicsgate.cli_helpers.console", con):
            print_error("pattern [a-z] failed")
        assert "[a-z]" in buf.getvalue()


class TestFormatting:

    def test_format_command_example(self):
        line = format_command_example("ethicsgate scan src/", "Scan a directory")
        assert line.startswith("  ethicsgate scan src/")
        assert line.endswith("Scan a directory")

    def test_build_examples_epilog(self):
        epilog = build_examples_epilog([("a", "first"), ("b", "second")])
        assert epilog.startswith("\nExamples:")
        assert epilog.count("\n") == 4

    def test_format_severity(self):
        assert format_severity(Severity.CRITICAL) == "[red bold]critical[/red bold]"
        assert format_severity(Severity.LOW) == "[white]low[/white]"


class TestSetupLogging:

    def test_handler_redacts(self):
        logger = setup_logging(verbose=True)
        root = logging.getLogger()
        try:
            assert logger.name == "ethicsgate"
            assert root.level == logging.DEBUG
            [handler] = root.handlers
            assert any(isinstance(f, RedactingFilter) for f in handler.filters)
        finally:
            root.handlers.clear()
            root.setLevel(logging.WARNING)

    def test_quiet_by_default(self):
        setup_logging()
        root = logging.getLogger()
        try:
            assert root.level == logging.WARNING
        finally:
            root.handlers.clear()


class TestBuildRuntime:

    def test_defaults(self, tmp_path):
        runtime = build_runtime(tmp_path)
        assert runtime.root == tmp_path.resolve()
        assert runtime.policy.name == "enterprise-default"
        assert runtime.policy.enforcement_mode == EnforcementMode.ERROR
        assert len(runtime.engine.catalogue) == 12

    def test_policy_rules_join_catalogue(self, tmp_path):
        policies = tmp_path / "policies"
        policies.mkdir()
        (policies / "extra.yaml").write_text(yaml.safe_dump({
            "name": "extra",
            "version": "1.0.0",
            "rules": [{
                "id": "privacy-dob", "name": "Date of birth", "category": "privacy",
                "severity": "medium", "pattern": "date_of_birth",
            }],
            "thresholds": {k: 0.5 for k in (
                "surveillance", "discrimination", "privacy", "misuse", "manipulation", "overall",
            )},
        }))

        runtime = build_runtime(tmp_path, policy_dir="policies")

        assert runtime.store.names() == ["extra"]
        assert "privacy-dob" in runtime.engine.catalogue
        assert len(runtime.engine.catalogue) == 13

    def test_teams_file_seeds_registry(self, tmp_path):
        (tmp_path / "teams.yaml").write_text(yaml.safe_dump({
            "teams": [{"id": "payments", "industry": "financial"}],
            "developers": [{"id": "ada", "email": "ada@example.com", "team_id": "payments"}],
        }))
        (tmp_path / ".ethicsgate.yaml").write_text("teams_file: teams.yaml\n")

        runtime = build_runtime(tmp_path)

        assert runtime.registry.get_profile("ada").team_id == "payments"

    def test_bad_teams_file(self, tmp_path):
        (tmp_path / "teams.yaml").write_text(yaml.safe_dump({
            "developers": [{"id": "ada"}, {"id": "ada"}],
        }))
        (tmp_path / ".ethicsgate.yaml").write_text("teams_file: teams.yaml\n")

        with pytest.raises(ConfigError, match="cannot load teams file"):
            build_runtime(tmp_path)
