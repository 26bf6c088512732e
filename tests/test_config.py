"""Tests for three-layer config loading and merging."""

import pytest

from buildq.config import deep_merge, load_config
from buildq.models import Role


# --- Three-layer merge ---

def test_load_default_config(tmp_project):
    """Load config.yaml correctly."""
    config = load_config(tmp_project)
    assert config.mode == "autonomous"
    assert config.role(Role.ARCHITECT).provider == "google"
    assert config.role(Role.CODER).model == "llama-3.1-8b-instant"
    assert config.budgets.max_retries == 2
    assert config.budgets.provider_max_attempts == 1
    assert config.memory.path == ".buildq/memory.md"


def test_local_overrides_base(tmp_project):
    """local.config.yaml overrides config.yaml field-by-field."""
    (tmp_project / ".buildq" / "local.config.yaml").write_text("""\
roles:
  coder:
    model: llama-3.3-70b-versatile
budgets:
  max_retries: 5
""")
    config = load_config(tmp_project)
    assert config.role(Role.CODER).model == "llama-3.3-70b-versatile"
    assert config.budgets.max_retries == 5
    # Un-overridden fields keep original values
    assert config.role(Role.CODER).provider == "groq"
    assert config.role(Role.REVIEWER).provider == "openrouter"


def test_env_var_overrides_all(tmp_project, monkeypatch):
    """Environment variables have highest priority."""
    monkeypatch.setenv("GROQ_API_KEY", "env-key-123")
    config = load_config(tmp_project)
    assert config.providers.groq.api_key == "env-key-123"
    assert config.api_key("groq") == "env-key-123"


def test_env_var_beats_local_config(tmp_project, monkeypatch):
    """Env var overrides local.config.yaml API key."""
    (tmp_project / ".buildq" / "local.config.yaml").write_text("""\
providers:
  openrouter:
    api_key: local-key-456
""")
    monkeypatch.setenv("OPENROUTER_API_KEY", "env-key-789")
    config = load_config(tmp_project)
    assert config.providers.openrouter.api_key == "env-key-789"


def test_local_key_used_without_env(tmp_project):
    (tmp_project / ".buildq" / "local.config.yaml").write_text("""\
providers:
  google:
    api_key: AIza-local
""")
    config = load_config(tmp_project)
    assert config.api_key("google") == "AIza-local"
    assert config.api_key("groq") == ""


def test_gemini_and_google_env_names(tmp_project, monkeypatch):
    """Both GEMINI_API_KEY and GOOGLE_API_KEY feed the google provider."""
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    assert load_config(tmp_project).api_key("google") == "gemini-key"
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
    assert load_config(tmp_project).api_key("google") == "google-key"


# --- deep merge edge cases ---

def test_deep_merge_nested_dicts():
    """deep merge: nested dicts are merged field-by-field."""
    base = {"a": {"x": 1, "y": 2}, "b": 10}
    override = {"a": {"y": 99, "z": 3}}
    result = deep_merge(base, override)
    assert result == {"a": {"x": 1, "y": 99, "z": 3}, "b": 10}


def test_deep_merge_list_replaces():
    """deep merge: lists are replaced entirely (not appended)."""
    base = {"ui": ["a", "b"]}
    override = {"ui": ["c"]}
    assert deep_merge(base, override) == {"ui": ["c"]}


def test_deep_merge_none_ignored():
    """deep merge: None values do not override."""
    base = {"model": "haiku"}
    override = {"model": None}
    result = deep_merge(base, override)
    assert result["model"] == "haiku"


# --- Config validation ---

def test_missing_config_yaml_uses_defaults(tmp_path):
    """No config.yaml → all defaults."""
    (tmp_path / ".buildq").mkdir()
    config = load_config(tmp_path)
    assert config.mode == "autonomous"
    assert config.budgets.max_retries == 2
    assert config.correction.strategy == "append"
    assert config.preview.source_tag == "buildq-agent"
    assert config.role(Role.REVIEWER).model == "mistralai/mistral-7b-instruct"


def test_invalid_yaml_raises(tmp_project):
    """Invalid YAML syntax → clear error."""
    (tmp_project / ".buildq" / "config.yaml").write_text("{{invalid yaml")
    with pytest.raises(Exception):
        load_config(tmp_project)


def test_non_mapping_yaml_raises(tmp_project):
    (tmp_project / ".buildq" / "config.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(tmp_project)


def test_invalid_mode_raises(tmp_project):
    (tmp_project / ".buildq" / "config.yaml").write_text("mode: yolo\n")
    with pytest.raises(ValueError, match="mode"):
        load_config(tmp_project)


def test_invalid_correction_strategy_raises(tmp_project):
    (tmp_project / ".buildq" / "config.yaml").write_text("correction:\n  strategy: merge\n")
    with pytest.raises(ValueError, match="strategy"):
        load_config(tmp_project)


def test_unknown_fields_ignored(tmp_project):
    """Unknown fields in config don't raise errors."""
    (tmp_project / ".buildq" / "config.yaml").write_text("""\
mode: god-mode
some_future_field: true
""")
    config = load_config(tmp_project)
    assert config.mode == "god-mode"
