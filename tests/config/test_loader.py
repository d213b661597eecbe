"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- _deep_merge() function
- load_config() precedence
- resolve_db_path() function
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from devmind.config.loader import (
    GLOBAL_CONFIG_PATH,
    _deep_merge,
    _load_yaml,
    load_config,
    resolve_db_path,
)
from devmind.config.models import DatabaseConfig, DevMindConfig, LoggingConfig
from devmind.core.errors import ConfigError


def _write_repo_config(root: Path, text: str) -> None:
    config_dir = root / ".devmind"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.yaml").write_text(text)


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        """Returns empty dict when file doesn't exist."""
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        """Loads valid YAML content."""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("store:\n  dedup_window_sec: 2\n")
        assert _load_yaml(yaml_file) == {"store": {"dedup_window_sec": 2}}

    def test_returns_empty_for_yaml_null(self, tmp_path: Path) -> None:
        """Returns empty dict for YAML containing null."""
        yaml_file = tmp_path / "null.yaml"
        yaml_file.write_text("null\n")
        assert _load_yaml(yaml_file) == {}

    def test_raises_config_error_for_invalid_yaml(self, tmp_path: Path) -> None:
        """Raises ConfigError for invalid YAML syntax."""
        yaml_file = tmp_path / "invalid.yaml"
        yaml_file.write_text("logging:\n  level:\n    - invalid: [unclosed")
        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)

    def test_raises_config_error_for_non_mapping(self, tmp_path: Path) -> None:
        """A top-level list is not a config."""
        yaml_file = tmp_path / "list.yaml"
        yaml_file.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_override_wins(self) -> None:
        """Override values replace base values."""
        assert _deep_merge({"a": 1}, {"a": 2}) == {"a": 2}

    def test_nested_dicts_merge(self) -> None:
        """Nested sections merge key by key."""
        base = {"learner": {"min_samples": 10, "threshold_step": 5}}
        override = {"learner": {"min_samples": 20}}
        assert _deep_merge(base, override) == {"learner": {"min_samples": 20, "threshold_step": 5}}

    def test_base_not_mutated(self) -> None:
        """The base mapping is left untouched."""
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestLoadConfig:
    """Tests for load_config function."""

    def test_returns_default_config_when_no_files(self, tmp_path: Path) -> None:
        """Returns default config when no config files exist."""
        with patch("devmind.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)
        assert isinstance(config, DevMindConfig)
        assert config.store.dedup_window_sec == 5.0
        assert config.learner.min_samples == 10

    def test_loads_repo_config(self, tmp_path: Path) -> None:
        """Loads config from the repo .devmind directory."""
        _write_repo_config(tmp_path, "optimizer:\n  archive_days: 120\n")
        with patch("devmind.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)
        assert config.optimizer.archive_days == 120

    def test_repo_config_overrides_global(self, tmp_path: Path) -> None:
        """Repo YAML wins over global YAML, section by section."""
        global_file = tmp_path / "global.yaml"
        global_file.write_text("learner:\n  min_samples: 30\n  threshold_step: 2\n")
        _write_repo_config(tmp_path, "learner:\n  min_samples: 15\n")
        with patch("devmind.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(tmp_path)
        assert config.learner.min_samples == 15
        assert config.learner.threshold_step == 2

    def test_env_vars_override_yaml(self, tmp_path: Path) -> None:
        """Environment variables override YAML config."""
        _write_repo_config(tmp_path, "logging:\n  level: INFO\n")
        with (
            patch("devmind.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(os.environ, {"DEVMIND__LOGGING__LEVEL": "WARNING"}),
        ):
            config = load_config(tmp_path)
        assert config.logging.level == "WARNING"

    def test_kwargs_override_all(self, tmp_path: Path) -> None:
        """Keyword arguments override everything."""
        with patch("devmind.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path, logging=LoggingConfig(level="ERROR"))
        assert config.logging.level == "ERROR"

    def test_raises_config_error_for_invalid_value(self, tmp_path: Path) -> None:
        """Validation failures surface as ConfigError."""
        _write_repo_config(tmp_path, "store:\n  dedup_window_sec: -1\n")
        with (
            patch("devmind.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            pytest.raises(ConfigError) as exc_info,
        ):
            load_config(tmp_path)
        assert "dedup_window_sec" in exc_info.value.details["field"]


class TestResolveDbPath:
    """Tests for resolve_db_path function."""

    def test_default_under_devmind_dir(self, tmp_path: Path) -> None:
        """Defaults to .devmind/memory.db under the root."""
        assert resolve_db_path(DevMindConfig(), tmp_path) == tmp_path / ".devmind" / "memory.db"

    def test_respects_configured_path(self, tmp_path: Path) -> None:
        """An explicit database path wins."""
        custom = tmp_path / "custom.db"
        config = DevMindConfig(database=DatabaseConfig(path=str(custom)))
        assert resolve_db_path(config, tmp_path) == custom


class TestGlobalConfigPath:
    """Tests for GLOBAL_CONFIG_PATH constant."""

    def test_is_in_user_config(self) -> None:
        """Path is in the user config directory."""
        assert isinstance(GLOBAL_CONFIG_PATH, Path)
        assert "devmind" in str(GLOBAL_CONFIG_PATH)
