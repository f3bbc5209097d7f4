#!/usr/bin/env python3
"""
Tests for the EthicsGate command line interface.

Each command runs through click's CliRunner inside an isolated workspace
(tmp_path as the current directory, no user config).
"""

import json
import sys
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

sys.path.insert(0, str(Path(__file__).parent.parent))

pytestmark = pytest.mark.cli

from ethicsgate import __version__
from ethicsgate.cli import main

NATIONALITY_LINE = 'if (user.nationality === "china") { return reject(); }'
GEOLOCATION_LINE = "navigator.geolocation.getCurrentPosition(onPosition);"


def _policy_document(name, mode="warn", discrimination=0.5, rules=()):
    return {
        "name": name,
        "version": "1.0.0",
        "rules": list(rules),
        "thresholds": {
            "surveillance": 0.5,
            "discrimination": discrimination,
            "privacy": 0.5,
            "misuse": 0.5,
            "manipulation": 0.5,
            "overall": 0.5,
        },
        "enforcement": {"mode": mode},
    }


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "src").mkdir()
    return tmp_path


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def _flat(text):
    """Collapse Rich's line wrapping so phrases can be matched."""
    return " ".join(text.split())


# =============================================================================
# Basics
# =============================================================================

class TestMain:

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("scan", "gate", "patents", "policy", "remediate", "install-hooks"):
            assert command in result.output


# =============================================================================
# scan
# =============================================================================

class TestScanCommand:

    def test_threshold_breach_exits_nonzero(self, runner, workspace):
        _write(workspace / "src" / "app.js", NATIONALITY_LINE)
        result = runner.invoke(main, ["scan", "src"])
        assert result.exit_code == 1
        assert "discrimination risk" in _flat(result.output)

    def test_clean_scan(self, runner, workspace):
        _write(workspace / "src" / "app.js", "const total = 1;")
        result = runner.invoke(main, ["scan", "src"])
        assert result.exit_code == 0
        assert "No ethical violations" in result.output

    def test_json_output(self, runner, workspace):
        _write(workspace / "src" / "geo.js", GEOLOCATION_LINE)
        result = runner.invoke(main, ["scan", "src", "--format", "json"])
        data = json.loads(result.stdout)
        assert data["policy"] == "enterprise-default"
        [file_result] = data["results"]
        assert file_result["file"] == "src/geo.js"
        assert file_result["violations"][0]["rule_id"] == "surveillance-location"

    def test_warn_mode_policy_does_not_fail(self, runner, workspace):
        _write(workspace / "src" / "app.js", NATIONALITY_LINE)
        _write(workspace / "policies" / "lenient.yaml", yaml.safe_dump(_policy_document("lenient")))
        result = runner.invoke(main, ["scan", "src", "--policy-dir", "policies"])
        assert result.exit_code == 0

    def test_invalid_config(self, runner, workspace):
        _write(workspace / ".ethicsgate.yaml", "standards: [NOPE]\n")
        _write(workspace / "src" / "app.js", "ok")
        result = runner.invoke(main, ["scan", "src"])
        assert result.exit_code == 1
        assert "invalid gate configuration" in _flat(result.output)


# =============================================================================
# gate
# =============================================================================

class TestGateCommand:

    def test_blocked_change(self, runner, workspace):
        _write(workspace / "src" / "app.js", NATIONALITY_LINE)
        result = runner.invoke(main, ["gate", "src", "--format", "json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["badge"]["status"] == "blocked"
        assert data["violations"][0]["rule_id"] == "discrimination-nationality"

    def test_warning_change_allowed(self, runner, workspace):
        _write(workspace / "src" / "geo.js", GEOLOCATION_LINE)
        result = runner.invoke(main, ["gate"])
        assert result.exit_code == 0
        assert "Change allowed" in result.output

    def test_report_written_to_file(self, runner, workspace):
        _write(workspace / "src" / "geo.js", GEOLOCATION_LINE)
        result = runner.invoke(main, ["gate", "src", "--format", "sarif", "-o", "out.sarif"])
        assert result.exit_code == 0
        assert json.loads((workspace / "out.sarif").read_text())["version"] == "2.1.0"

    def test_override_of_critical_rejected(self, runner, workspace):
        _write(workspace / "src" / "app.js", NATIONALITY_LINE)
        vid = "discrimination-nationality@src/app.js:1:0"
        result = runner.invoke(main, ["gate", "src", "--override", vid, "--reason", "legacy"])
        assert result.exit_code == 1
        assert "never overridable" in _flat(result.output)

    def test_patent_findings_included(self, runner, workspace):
        _write(workspace / "src" / "shop.js", 'const label = "One click purchase";')
        result = runner.invoke(main, ["gate", "src", "--patents", "--format", "json"])
        data = json.loads(result.stdout)
        assert [v["rule_id"] for v in data["violations"]] == ["patent-one-click-purchase"]


# =============================================================================
# patents
# =============================================================================

class TestPatentsCommand:

    def test_critical_risk_exits_nonzero(self, runner, workspace):
        _write(workspace / "src" / "keys.py", "import rsa\n")
        result = runner.invoke(main, ["patents", "src", "--format", "json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["critical_risk_count"] >= 1
        assert data["summary"]["overall_risk"] == "critical"

    def test_no_risks(self, runner, workspace):
        _write(workspace / "src" / "app.js", "const total = 1;")
        result = runner.invoke(main, ["patents", "src"])
        assert result.exit_code == 0
        assert "No patent infringement risks detected" in _flat(result.output)


# =============================================================================
# policy
# =============================================================================

class TestPolicyCommands:

    def test_validate(self, runner, workspace):
        good = _write(workspace / "good.yaml", yaml.safe_dump(_policy_document("good")))
        bad = _write(workspace / "bad.yaml", "name: bad\nversion: one\n")

        assert runner.invoke(main, ["policy", "validate", str(good)]).exit_code == 0
        result = runner.invoke(main, ["policy", "validate", str(good), str(bad)])
        assert result.exit_code == 1
        assert "policy 'good'" in _flat(result.output)

    def test_show_default(self, runner, workspace):
        result = runner.invoke(main, ["policy", "show"])
        assert result.exit_code == 0
        assert "built-in default" in _flat(result.output)
        assert "enterprise-default" in result.output

    def test_show_yaml(self, runner, workspace):
        result = runner.invoke(main, ["policy", "show", "--yaml"])
        assert yaml.safe_load(result.stdout)["name"] == "enterprise-default"

    def test_merge(self, runner, workspace):
        a = _write(workspace / "a.yaml", yaml.safe_dump(_policy_document("a", "warn", 0.4)))
        b = _write(workspace / "b.yaml", yaml.safe_dump(_policy_document("b", "block", 0.6)))

        result = runner.invoke(main, ["policy", "merge", str(a), str(b), "-o", "merged.yaml"])

        assert result.exit_code == 0
        merged = yaml.safe_load((workspace / "merged.yaml").read_text())
        assert merged["name"] == "merged-policy"
        assert merged["thresholds"]["discrimination"] == 0.4
        assert merged["enforcement"]["mode"] == "block"


# =============================================================================
# remediate / install-hooks
# =============================================================================

class TestRemediateCommand:

    def test_suggestions_for_line(self, runner, workspace):
        _write(workspace / "src" / "app.js", NATIONALITY_LINE)
        result = runner.invoke(main, ["remediate", "src/app.js", "--line", "1", "--format", "json"])
        assert result.exit_code == 0
        [entry] = json.loads(result.stdout)["violations"]
        assert entry["violation"]["rule_id"] == "discrimination-nationality"
        assert entry["suggestions"]
        assert entry["assist_error"] is None

    def test_clean_line(self, runner, workspace):
        _write(workspace / "src" / "app.js", "const a = 1;\n" + NATIONALITY_LINE)
        result = runner.invoke(main, ["remediate", "src/app.js", "--line", "1"])
        assert result.exit_code == 0
        assert "No violations on line 1" in _flat(result.output)


class TestInstallHooksCommand:

    def test_requires_git(self, runner, workspace):
        result = runner.invoke(main, ["install-hooks"])
        assert result.exit_code == 1
        assert "not a git repository" in _flat(result.output)

    def test_installs_pre_commit(self, runner, workspace):
        (workspace / ".git").mkdir()
        result = runner.invoke(main, ["install-hooks"])
        assert result.exit_code == 0
        assert (workspace / ".git" / "hooks" / "pre-commit").exists()
