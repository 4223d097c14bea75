"""Tests for configuration loading."""

import pytest

from prwatch_core.config import DEFAULT_GUIDELINES, load_config, load_guidelines


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["model"] == "anthropic"
    assert config["store"] == "memory"
    assert config["guidelines"] is None
    assert config["auto_reply"] is False
    assert config["targets"] == []
    assert config["queue"] == {"max_retries": 3, "base_delay": 1.0, "retry_delay": 5.0}


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("model: openai\nstore: sqlite\nauto_reply: true\n")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "openai"
    assert config["store"] == "sqlite"
    assert config["auto_reply"] is True


def test_queue_section_merged_key_by_key(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("queue:\n  retry_delay: 30\n")
    config = load_config(config_path=str(cfg))
    assert config["queue"] == {"max_retries": 3, "base_delay": 1.0, "retry_delay": 30}


def test_defaults_not_mutated_between_loads(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("queue:\n  max_retries: 9\ntargets:\n  - {host: backlog, project: P, repository: r}\n")
    load_config(config_path=str(cfg))
    config = load_config(config_path=str(tmp_path / "missing.yml"))
    assert config["queue"]["max_retries"] == 3
    assert config["targets"] == []


def test_targets_loaded(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("targets:\n  - host: backlog\n    project: PROJ\n    repository: api\n")
    config = load_config(config_path=str(cfg))
    assert config["targets"] == [{"host": "backlog", "project": "PROJ", "repository": "api"}]


def test_empty_config_file(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("")
    assert load_config(config_path=str(cfg))["model"] == "anthropic"


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".prwatch.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": "anthropic", "guidelines": None})
    assert config["model"] == "anthropic"
    assert config["guidelines"] is None


def test_credentials_read_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BACKLOG_SPACE", "acme")
    monkeypatch.setenv("BACKLOG_API_KEY", "bk")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ak")
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    config = load_config(config_path=str(tmp_path / "missing.yml"))
    assert config["backlog_space"] == "acme"
    assert config["backlog_api_key"] == "bk"
    assert config["anthropic_api_key"] == "ak"
    assert config["github_token"] is None


def test_load_guidelines_default():
    assert load_guidelines({"guidelines": None}) == DEFAULT_GUIDELINES


def test_load_guidelines_custom(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# Team rules\n- no globals\n")
    assert load_guidelines({"guidelines": str(path)}).startswith("# Team rules")


def test_load_guidelines_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_guidelines({"guidelines": str(tmp_path / "nope.md")})
