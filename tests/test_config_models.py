#!/usr/bin/env python3
"""
Tests for EthicsGate configuration loading and the pattern catalogue.

Tests coverage of:
- GateConfig / AssistConfig validation
- Layered gate configuration with environment overrides
- Built-in catalogue loading and validation failures
- Portable regex flags and matcher behaviour
- Language and path classification
"""

import sys
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

pytestmark = pytest.mark.config

from ethicsgate.config.manager import (
    ConfigError,
    apply_env_overrides,
    config_layers,
    deep_merge,
    load_gate_config,
)
from ethicsgate.config.models import (
    KNOWN_STANDARDS,
    AssistConfig,
    GateConfig,
    RuleDefinition,
    TeamsDocument,
    format_validation_error,
)
from ethicsgate.detection.catalogue import PatternCatalogue, build_rule
from ethicsgate.detection.language import (
    detect_language,
    is_comment_line,
    is_production_path,
    is_relevant_file,
    is_test_path,
    iter_source_files,
)
from ethicsgate.detection.matcher import PatternSyntaxError, RegexMatcher, translate_flags
from ethicsgate.models import Category


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


# =============================================================================
# Models
# =============================================================================

class TestGateConfigModel:

    def test_defaults(self):
        config = GateConfig()
        assert config.block_on_critical
        assert config.require_review_for_high
        assert not config.allow_override
        assert config.standards == list(KNOWN_STANDARDS)
        assert config.workers == 4
        assert not config.assist.enabled

    def test_standards_normalized(self):
        assert GateConfig(standards=["gdpr", "hipaa"]).standards == ["GDPR", "HIPAA"]

    def test_unknown_standard_rejected(self):
        with pytest.raises(ValidationError, match="Unknown compliance standard"):
            GateConfig(standards=["ISO-27001"])

    def test_workers_bounded(self):
        with pytest.raises(ValidationError):
            GateConfig(workers=0)

    def test_unknown_keys_allowed(self):
        assert GateConfig.model_validate({"future_option": True}).block_on_critical

    def test_assist_provider_validated(self):
        assert AssistConfig(provider="openai").provider == "openai"
        with pytest.raises(ValidationError, match="unknown assist provider"):
            AssistConfig(provider="mystery")

    def test_rule_definition_compiles_pattern(self):
        with pytest.raises(ValidationError, match="rule 'bad'"):
            RuleDefinition(id="bad", name="Bad", category="misuse", severity="low", pattern="(")

    def test_rule_definition_aliases(self):
        rule = RuleDefinition.model_validate({
            "id": "r", "name": "R", "category": "privacy", "severity": "high",
            "pattern": "ssn", "contextDependent": True, "customMessage": "SSN found",
        })
        assert rule.context_dependent
        assert build_rule(rule).description == "SSN found"

    def test_teams_document_duplicate_ids(self):
        with pytest.raises(ValidationError, match="Duplicate team IDs"):
            TeamsDocument.model_validate({"teams": [{"id": "a"}, {"id": "a"}]})

    def test_format_validation_error(self):
        try:
            GateConfig(workers="many")
        except ValidationError as e:
            assert format_validation_error(e).startswith("workers:")
        assert format_validation_error(ValueError("plain")) == "plain"


# =============================================================================
# Layered loading
# =============================================================================

class TestLoadGateConfig:

    def test_builtin_defaults(self):
        config = load_gate_config(environ={})
        assert config.review_contacts.ethics == "ethics-team@company.com"
        assert config.assist.timeout_seconds == 10.0

    def test_project_layer_wins_over_user_layer(self, tmp_path):
        user = _write_yaml(tmp_path / "user.yaml", {"allow_override": True, "workers": 2})
        project = tmp_path / "project"
        project.mkdir()
        _write_yaml(project / ".ethicsgate.yaml", {"workers": 8, "assist": {"enabled": True}})

        config = load_gate_config(project, user_config=user, environ={})

        assert config.allow_override
        assert config.workers == 8
        assert config.assist.enabled
        assert config.assist.provider == "auto"

    def test_layer_order(self, tmp_path):
        layers = config_layers(tmp_path, user_config=tmp_path / "u.yaml")
        assert layers[1] == tmp_path / "u.yaml"
        assert layers[-1] == tmp_path / ".ethicsgate.yaml"

    def test_env_overrides(self, tmp_path):
        config = load_gate_config(environ={
            "ETHICSGATE_ALLOW_OVERRIDE": "yes",
            "ETHICSGATE_WORKERS": "2",
            "ETHICSGATE_ASSIST_PROVIDER": "fallback",
        })
        assert config.allow_override
        assert config.workers == 2
        assert config.assist.provider == "fallback"

    def test_env_invalid_bool(self):
        with pytest.raises(ConfigError, match="must be a boolean"):
            apply_env_overrides({}, {"ETHICSGATE_BLOCK_ON_CRITICAL": "sometimes"})

    def test_env_invalid_int(self):
        with pytest.raises(ConfigError, match="must be an integer"):
            apply_env_overrides({}, {"ETHICSGATE_WORKERS": "four"})

    def test_empty_env_value_ignored(self):
        assert apply_env_overrides({"workers": 3}, {"ETHICSGATE_WORKERS": ""}) == {"workers": 3}

    def test_non_mapping_layer(self, tmp_path):
        (tmp_path / ".ethicsgate.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="must be a mapping"):
            load_gate_config(tmp_path, environ={})

    def test_invalid_merged_config(self, tmp_path):
        _write_yaml(tmp_path / ".ethicsgate.yaml", {"standards": ["NOPE"]})
        with pytest.raises(ConfigError, match="invalid gate configuration"):
            load_gate_config(tmp_path, environ={})

    def test_deep_merge_does_not_mutate(self):
        base = {"assist": {"enabled": False, "model": "auto"}}
        merged = deep_merge(base, {"assist": {"enabled": True}})
        assert merged == {"assist": {"enabled": True, "model": "auto"}}
        assert base["assist"]["enabled"] is False


# =============================================================================
# Catalogue
# =============================================================================

class TestCatalogue:

    def test_builtin_catalogue(self, catalogue):
        assert len(catalogue) == 12
        assert "discrimination-nationality" in catalogue
        assert all(r.source == "builtin" for r in catalogue)
        assert {r.category for r in catalogue} == set(Category)

    def test_builtin_is_shared(self):
        assert PatternCatalogue.load_builtin() is PatternCatalogue.load_builtin()

    def test_rule_count_mismatch(self, tmp_path):
        path = _write_yaml(tmp_path / "patterns.yaml", {
            "version": 1,
            "rule_count": 3,
            "rules": [{"id": "a", "name": "A", "category": "misuse", "severity": "low", "pattern": "x"}],
        })
        with pytest.raises(PatternSyntaxError, match="rule_count"):
            PatternCatalogue.from_file(path)

    def test_from_file_source_label(self, tmp_path):
        path = _write_yaml(tmp_path / "extra.yaml", {
            "version": 1,
            "rules": [{"id": "a", "name": "A", "category": "misuse", "severity": "low", "pattern": "x"}],
        })
        [rule] = PatternCatalogue.from_file(path).rules
        assert rule.source == "extra"

    def test_duplicate_ids_rejected(self, catalogue):
        rule = catalogue.rules[0]
        with pytest.raises(ValueError, match="Duplicate rule id"):
            PatternCatalogue([rule, rule])

    def test_combined_with_first_wins(self, catalogue):
        first = catalogue.rules[0]
        replacement = build_rule(RuleDefinition(
            id=first.id, name="Replacement", category="misuse", severity="low", pattern="zzz",
        ), source="policy")
        combined = catalogue.combined_with(PatternCatalogue([replacement]))
        assert len(combined) == len(catalogue)
        assert combined.get(first.id).source == "builtin"

    def test_by_category(self, catalogue):
        assert all(r.category == Category.PRIVACY for r in catalogue.by_category("privacy"))


# =============================================================================
# Matcher
# =============================================================================

class TestMatcher:

    def test_translate_flags(self):
        import re
        assert translate_flags("gi") == re.IGNORECASE
        assert translate_flags("gu") == 0
        with pytest.raises(PatternSyntaxError, match="Unknown pattern flag"):
            translate_flags("gx")

    def test_empty_pattern(self):
        with pytest.raises(PatternSyntaxError):
            RegexMatcher("")

    def test_invalid_pattern(self):
        with pytest.raises(PatternSyntaxError, match="Invalid regex"):
            RegexMatcher("[unclosed")

    def test_named_group_syntax(self):
        matcher = RegexMatcher(r"(?<field>ssn)\s*=")
        assert [s.text for s in matcher.finditer("const ssn = 1")] == ["ssn ="]

    def test_lookbehind_preserved(self):
        assert RegexMatcher(r"(?<=\.)ssn").search("form.ssn")

    def test_zero_width_matches_skipped(self):
        assert list(RegexMatcher(r"x*").finditer("abc")) == []

    def test_case_sensitivity_follows_flags(self):
        assert RegexMatcher("ssn", "gi").search("SSN")
        assert not RegexMatcher("ssn", "g").search("SSN")

    def test_span(self):
        [span] = RegexMatcher("geo").finditer("  geo")
        assert (span.start, span.end, span.length) == (2, 5, 3)


# =============================================================================
# Language and paths
# =============================================================================

class TestLanguage:

    @pytest.mark.parametrize("path,language", [
        ("src/app.js", "javascript"),
        ("src/App.TSX", "typescript"),
        ("tool.py", "python"),
        ("README.md", "unknown"),
    ])
    def test_detect_language(self, path, language):
        assert detect_language(path) == language

    @pytest.mark.parametrize("path", [
        "tests/geo.js", "src/geo.test.js", "src/__tests__/geo.js", "src/GeoSpec.ts", "spec/helper.rb",
    ])
    def test_test_paths(self, path):
        assert is_test_path(path)

    @pytest.mark.parametrize("path", ["src/app.js", "src/latest.js", "src/contest.py"])
    def test_production_code_is_not_test(self, path):
        assert not is_test_path(path)

    def test_production_path(self):
        assert is_production_path("src/main.js")
        assert not is_production_path("src/app.js")

    def test_comment_lines(self):
        assert is_comment_line("   // note")
        assert is_comment_line("# note")
        assert not is_comment_line("x = 1  # note")

    def test_relevant_files(self):
        assert is_relevant_file("a.tsx")
        assert not is_relevant_file("a.rb")

    def test_iter_source_files(self, tmp_path):
        (tmp_path / "node_modules" / "lib").mkdir(parents=True)
        (tmp_path / "node_modules" / "lib" / "index.js").write_text("x")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "b.py").write_text("x")
        (tmp_path / "src" / "a.js").write_text("x")
        (tmp_path / "notes.md").write_text("x")

        found = [p.relative_to(tmp_path).as_posix() for p in iter_source_files(tmp_path)]
        assert found == ["src/a.js", "src/b.py"]

    def test_iter_single_file(self, tmp_path):
        path = tmp_path / "a.js"
        path.write_text("x")
        assert list(iter_source_files(path)) == [path]
