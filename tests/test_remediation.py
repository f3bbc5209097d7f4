#!/usr/bin/env python3
"""
Tests for remediation candidates and the optional LLM assistant.

Tests coverage of:
- Rule-based templates per category
- Re-scan of every code-bearing candidate; non-compliant ones are dropped
- Ranking: risk_reduction x confidence x compliance, guidance last
- Assisted candidates with a mocked provider, including timeouts
- Provider resolution and response parsing
"""

import json
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

pytestmark = pytest.mark.remediation

from ethicsgate.config.models import AssistConfig
from ethicsgate.llm.assistant import (
    AssistProvider,
    AssistProviderError,
    FallbackAssistProvider,
    RemediationAssistant,
    get_assistant,
    resolve_provider,
)
from ethicsgate.models import Category
from ethicsgate.remediation.engine import RemediationEngine, SuggestionSource
from ethicsgate.remediation.templates import (
    add_consent_request,
    encrypt_sensitive_data,
    make_fees_transparent,
    remove_auth_bypass,
    remove_nationality_filter,
    template_for,
)

NATIONALITY_LINE = 'if (user.nationality === "china") { return reject(); }'
GEOLOCATION_LINE = "navigator.geolocation.getCurrentPosition(onPosition);"


class FakeProvider(AssistProvider):
    """Scripted provider standing in for a real LLM endpoint."""

    def __init__(self, response="", delay=0.0, error=None, available=True, label="fake"):
        self.response = response
        self.delay = delay
        self.error = error
        self.available = available
        self.label = label
        self.calls = []

    def call(self, system_prompt, user_prompt, max_tokens=1024):
        self.calls.append(user_prompt)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response

    def is_available(self):
        return self.available

    @property
    def name(self):
        return self.label

    @property
    def model_name(self):
        return "fake-model"


def _assist_json(*suggestions):
    return json.dumps({
        "analysis": "Filters applicants by nationality",
        "confidence": 0.9,
        "suggestions": list(suggestions),
        "riskAssessment": {"intentionality": "unclear", "severity": "critical"},
    })


@pytest.fixture
def adjusted_for(engine, adjuster, make_context):
    def _adjusted(content, file_name="src/app.js"):
        context = make_context(content, file_name=file_name)
        violations = engine.analyze(context).violations
        return adjuster.adjust(violations), context
    return _adjusted


# =============================================================================
# Templates
# =============================================================================

class TestTemplates:

    def test_nationality_condition_becomes_eligibility_check(self):
        fixed = remove_nationality_filter(NATIONALITY_LINE, "javascript")
        assert fixed == "if (!isEligible(user)) { return reject(); }"

    def test_nationality_condition_python(self):
        fixed = remove_nationality_filter("if (applicant.country == 'iran'):", "python")
        assert fixed == "if (not is_eligible(applicant)):"

    def test_nationality_filter_callback(self):
        code = 'users.filter(u => u.nationality !== "russia")'
        assert remove_nationality_filter(code, "javascript") == "users.filter(u => isEligible(u))"

    def test_consent_wrapper(self):
        assert add_consent_request(GEOLOCATION_LINE, "javascript") == "requestLocationWithConsent(onPosition);"

    def test_encrypt_sensitive_assignment(self):
        assert encrypt_sensitive_data("ssn = user.ssn;", "python") == "ssn_encrypted = encrypt_pii(user.ssn);"

    def test_auth_bypass_removed(self):
        fixed = remove_auth_bypass('if (user === "admin") { bypassAuth(); }', "javascript")
        assert fixed.startswith("// Removed hardcoded authentication bypass")

    def test_hidden_fee_revealed(self):
        fixed = make_fees_transparent('<span style="display: none">Service fee</span>', "html")
        assert "display: block" in fixed

    def test_template_that_changes_nothing_yields_none(self):
        assert template_for(Category.DISCRIMINATION).apply("const x = 1;") is None


# =============================================================================
# Engine
# =============================================================================

class TestRemediationEngine:

    def test_discrimination_gets_template_then_guidance(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)

        result = RemediationEngine().suggest(av, context)

        sources = [s.source for s in result.suggestions]
        assert sources == [SuggestionSource.RULE_BASED, SuggestionSource.MANUAL_GUIDANCE]
        best = result.best
        assert best.suggested_code == "if (!isEligible(user)) { return reject(); }"
        assert best.compliance_check.compliant
        assert best.original_code == NATIONALITY_LINE

    def test_guidance_has_no_code_and_is_not_compliant(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        guidance = RemediationEngine().suggest(av, context).suggestions[-1]
        assert guidance.suggested_code is None
        assert not guidance.compliance_check.compliant
        assert guidance.effort == "critical_review"

    def test_surveillance_consent_candidate(self, adjusted_for):
        [av], context = adjusted_for(GEOLOCATION_LINE)
        result = RemediationEngine().suggest(av, context)
        assert result.best.suggested_code == "requestLocationWithConsent(onPosition);"
        assert result.suggestions[-1].source == SuggestionSource.MANUAL_GUIDANCE

    def test_compliance_check_flags_new_violations(self):
        check = RemediationEngine().check_compliance(
            "eval(request.body.code)", Category.MISUSE, "a.js", "javascript"
        )
        assert not check.compliant
        assert check.potential_new_violations == ("misuse-injection",)
        assert check.compliance_score == pytest.approx(1.0 - 0.9 * 0.1)

    def test_compliant_code_lists_applicable_rules(self):
        check = RemediationEngine().check_compliance("return total;", Category.MISUSE)
        assert check.compliant
        assert set(check.applicable_rules) == {"misuse-backdoor", "misuse-injection"}


# =============================================================================
# Assisted candidates
# =============================================================================

class TestAssisted:

    def test_assisted_candidate_ranked_by_score(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(_assist_json({
            "code": "if (!meetsPublishedCriteria(user)) { return reject(); }",
            "explanation": "Use published criteria",
            "confidence": 0.99,
            "riskReduction": 0.99,
            "effort": "low",
        }))
        engine = RemediationEngine(assistant=RemediationAssistant(provider, timeout=5))

        result = engine.suggest(av, context)

        assert [s.source for s in result.suggestions] == [
            SuggestionSource.ASSISTED,
            SuggestionSource.RULE_BASED,
            SuggestionSource.MANUAL_GUIDANCE,
        ]
        assert result.assist_error is None
        assert "nationality" in provider.calls[0]

    def test_non_compliant_assisted_candidate_rejected(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(_assist_json({
            "code": "eval(request.body.rule)",
            "explanation": "dynamic rule",
            "confidence": 0.99,
            "riskReduction": 0.99,
        }))
        engine = RemediationEngine(assistant=RemediationAssistant(provider, timeout=5))

        result = engine.suggest(av, context)

        assert all(s.source != SuggestionSource.ASSISTED for s in result.suggestions)
        assert result.rejected[0][0].startswith("assist-1-")
        assert "misuse-injection" in result.rejected[0][1]

    def test_timeout_drops_assisted_source_only(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(_assist_json(), delay=2.0)
        engine = RemediationEngine(assistant=RemediationAssistant(provider, timeout=0.05))

        started = time.monotonic()
        result = engine.suggest(av, context)

        assert time.monotonic() - started < 1.5
        assert "timed out" in result.assist_error
        assert [s.source for s in result.suggestions] == [
            SuggestionSource.RULE_BASED, SuggestionSource.MANUAL_GUIDANCE,
        ]

    def test_provider_error_is_not_fatal(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(error=AssistProviderError("rate limited"))
        engine = RemediationEngine(assistant=RemediationAssistant(provider, timeout=5))
        result = engine.suggest(av, context)
        assert result.assist_error == "rate limited"
        assert result.best.source == SuggestionSource.RULE_BASED

    def test_unexpected_provider_exception_is_not_fatal(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(error=ConnectionError("connection reset by peer"))
        engine = RemediationEngine(assistant=RemediationAssistant(provider, timeout=5))

        result = engine.suggest(av, context)

        assert "ConnectionError" in result.assist_error
        assert "connection reset by peer" in result.assist_error
        assert [s.source for s in result.suggestions] == [
            SuggestionSource.RULE_BASED, SuggestionSource.MANUAL_GUIDANCE,
        ]

    def test_disabled_assistant_is_never_called(self, adjusted_for):
        [av], context = adjusted_for(NATIONALITY_LINE)
        provider = FakeProvider(_assist_json())
        engine = RemediationEngine(assistant=RemediationAssistant(provider, enabled=False))
        engine.suggest(av, context)
        assert provider.calls == []


# =============================================================================
# Assistant plumbing
# =============================================================================

class TestAssistant:

    def test_parse_fenced_response(self):
        data = RemediationAssistant._parse_response('Here you go:\n```json\n{"analysis": "ok"}\n```')
        assert data == {"analysis": "ok"}

    def test_parse_response_with_chatter(self):
        data = RemediationAssistant._parse_response('Sure. {"confidence": 0.4} Hope that helps')
        assert data == {"confidence": 0.4}

    def test_parse_response_without_json(self):
        with pytest.raises(AssistProviderError):
            RemediationAssistant._parse_response("I cannot help with that")

    def test_suggestions_without_code_are_dropped(self, engine, make_context):
        violation = engine.analyze(make_context(NATIONALITY_LINE)).violations[0]
        provider = FakeProvider(_assist_json(
            {"code": "  ", "explanation": "empty"},
            {"code": "ok()", "confidence": 7, "effort": "enormous"},
        ))
        response = RemediationAssistant(provider, timeout=5).analyze("code", violation)
        assert len(response.suggestions) == 1
        assert response.suggestions[0].confidence == 1.0
        assert response.suggestions[0].effort == "medium"
        assert response.provider == "fake"

    def test_analyze_when_disabled_raises(self, engine, make_context):
        violation = engine.analyze(make_context(NATIONALITY_LINE)).violations[0]
        with pytest.raises(AssistProviderError):
            RemediationAssistant(None).analyze("code", violation)

    def test_analyze_wraps_unexpected_provider_errors(self, engine, make_context):
        violation = engine.analyze(make_context(NATIONALITY_LINE)).violations[0]
        provider = FakeProvider(error=KeyError("content"))
        with pytest.raises(AssistProviderError) as exc:
            RemediationAssistant(provider, timeout=5).analyze("code", violation)
        assert not exc.value.is_timeout
        assert isinstance(exc.value.__cause__, KeyError)

    def test_fallback_provider_uses_next_on_failure(self):
        broken = FakeProvider(error=AssistProviderError("down"), label="first")
        working = FakeProvider("{}", label="second")
        fallback = FallbackAssistProvider([broken, working])
        assert fallback.call("sys", "user") == "{}"
        assert fallback.name == "fallback(second)"

    def test_fallback_provider_all_fail(self):
        fallback = FallbackAssistProvider([FakeProvider(error=AssistProviderError("slow", is_timeout=True))])
        with pytest.raises(AssistProviderError) as exc:
            fallback.call("sys", "user")
        assert exc.value.is_timeout

    def test_resolve_provider_without_keys(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert resolve_provider(AssistConfig(enabled=True)) is None
        assert resolve_provider(AssistConfig(enabled=True, provider="anthropic")) is None

    def test_get_assistant_is_shared(self):
        first = get_assistant(AssistConfig())
        assert get_assistant() is first
        assert not first.is_enabled()
