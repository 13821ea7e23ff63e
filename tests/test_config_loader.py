"""Tests for rule file discovery, loading and validation."""

import pytest

from standardbot.config import load_config, parse_config
from standardbot.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
    discover_config_path,
    expand_env_vars,
)
from standardbot.config.schema import RuleSpec


class TestExpandEnvVars:
    def test_expands_nested(self, monkeypatch):
        monkeypatch.setenv("TEAM", "core")
        value = {"labels": {"x": {"action": "comment", "message": "ping ${TEAM}"}}}
        assert expand_env_vars(value)["labels"]["x"]["message"] == "ping core"

    def test_template_tokens_untouched(self):
        assert expand_env_vars("Closing in $DELAY") == "Closing in $DELAY"

    def test_missing_strict(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        with pytest.raises(EnvironmentVariableError) as exc_info:
            expand_env_vars("${NOPE_NOT_SET}")
        assert exc_info.value.var_name == "NOPE_NOT_SET"

    def test_missing_lenient(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        assert expand_env_vars("${NOPE_NOT_SET}", strict=False) == "${NOPE_NOT_SET}"


class TestDiscoverConfigPath:
    def test_explicit_missing(self, temp_dir):
        with pytest.raises(ConfigNotFoundError):
            discover_config_path(temp_dir / "missing.yaml")

    def test_env_var(self, write_config, monkeypatch):
        path = write_config({"labels": {}}, "custom.yaml")
        monkeypatch.setenv("STANDARDBOT_CONFIG", str(path))
        assert discover_config_path() == path.resolve()

    def test_github_directory_first(self, temp_dir, write_config, monkeypatch):
        monkeypatch.delenv("STANDARDBOT_CONFIG", raising=False)
        monkeypatch.chdir(temp_dir)
        write_config({}, "standard.yaml")
        nested = write_config({}, ".github/standard.yaml")
        assert discover_config_path().resolve() == nested.resolve()

    def test_nothing_found(self, temp_dir, monkeypatch):
        monkeypatch.delenv("STANDARDBOT_CONFIG", raising=False)
        monkeypatch.chdir(temp_dir)
        with pytest.raises(ConfigNotFoundError, match="Searched locations"):
            discover_config_path()


class TestLoadConfig:
    def test_sample(self, write_config, sample_config):
        config = load_config(write_config(sample_config))
        assert config.labels["wontfix"] == "close"
        assert isinstance(config.labels["Duplicate"], RuleSpec)
        assert config.default["close"].delay == "3 days"
        assert len(config.merges) == 2
        assert config.rule_count() == 6 + 2 + 2 + 2 + 1

    def test_empty_file(self, temp_dir):
        path = temp_dir / "standard.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.rule_count() == 0

    def test_empty_sections(self, temp_dir):
        path = temp_dir / "standard.yaml"
        path.write_text("labels:\nmerges:\ncloses:\n")
        config = load_config(path)
        assert config.labels == {}
        assert config.merges == []

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "standard.yaml"
        path.write_text("labels: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, temp_dir):
        path = temp_dir / "standard.yaml"
        path.write_text("- close\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_env_error_carries_path(self, write_config, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        path = write_config({"labels": {"x": {"action": "comment", "message": "${NOPE_NOT_SET}"}}})
        with pytest.raises(EnvironmentVariableError) as exc_info:
            load_config(path)
        assert exc_info.value.path == path.resolve()


class TestParseConfig:
    def test_unknown_top_level_key(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_config({"lables": {}})
        assert exc_info.value.validation_errors

    def test_bad_delay(self):
        with pytest.raises(ConfigValidationError, match="labels"):
            parse_config({"labels": {"stale": {"action": "close", "delay": "soon"}}})

    def test_negative_delay(self):
        with pytest.raises(ConfigValidationError):
            parse_config({"closes": [{"action": "lock", "delay": -5}]})

    def test_comment_true_means_default(self):
        config = parse_config({"labels": {"x": {"action": "close", "comment": True}}})
        assert config.labels["x"].comment is None

    def test_comment_false_kept(self):
        config = parse_config({"labels": {"x": {"action": "close", "comment": False}}})
        assert config.labels["x"].comment is False

    def test_missing_action(self):
        with pytest.raises(ConfigValidationError):
            parse_config({"merges": [{"delay": "1d"}]})
