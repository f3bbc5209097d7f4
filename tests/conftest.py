"""Pytest configuration and fixtures for EthicsGate tests."""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ethicsgate.config.models import GateConfig
from ethicsgate.detection.catalogue import PatternCatalogue
from ethicsgate.detection.engine import DetectionEngine
from ethicsgate.models import AnalysisContext
from ethicsgate.team.adjustment import SeverityAdjuster
from ethicsgate.team.identity import StaticIdentityProvider
from ethicsgate.team.registry import ActorRegistry


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Shared assistant and redactor never leak between tests."""
    from ethicsgate.llm.assistant import reset_assistant
    import ethicsgate.logging.redaction as redaction

    reset_assistant()
    redaction._redactor = None
    yield
    reset_assistant()
    redaction._redactor = None


@pytest.fixture(autouse=True)
def _isolate_user_config(tmp_path, monkeypatch):
    """Never read the real ~/.ethicsgate/config.yaml or ETHICSGATE_* variables."""
    monkeypatch.setattr(
        "ethicsgate.config.manager.USER_CONFIG_FILE", tmp_path / "no-user-config.yaml"
    )
    for name in list(os.environ):
        if name.startswith("ETHICSGATE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root():
    """Return the EthicsGate project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def catalogue():
    return PatternCatalogue.load_builtin()


@pytest.fixture
def engine(catalogue):
    return DetectionEngine(catalogue)


@pytest.fixture
def make_context():
    def _make(content, file_name="src/app.js", language=None, **kwargs):
        if language is None:
            from ethicsgate.detection.language import detect_language
            language = detect_language(file_name)
        return AnalysisContext(content=content, file_name=file_name, language=language, **kwargs)
    return _make


@pytest.fixture
def registry():
    return ActorRegistry()


@pytest.fixture
def adjuster(registry):
    """Adjuster that always resolves to the unknown actor."""
    return SeverityAdjuster(registry, StaticIdentityProvider(None))


@pytest.fixture
def gate_config():
    return GateConfig()
