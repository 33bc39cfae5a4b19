"""Tests for configuration loading, env overrides and validation."""

from __future__ import annotations

import os
from typing import Any

import pytest

from lta_datamall_mcp.config.loader import CONFIG_ENV_VAR, find_config_file, load_config
from lta_datamall_mcp.config.schema import DatamallConfig
from lta_datamall_mcp.errors import ConfigurationError

_ENV_VARS = (
    "LTA_API_KEY",
    "HOST",
    "PORT",
    "ANALYTICS_FILE",
    "FIREBASE_DATABASE_URL",
    "FIREBASE_AUTH_TOKEN",
    "ANALYTICS_IMPORT_TOKEN",
    CONFIG_ENV_VAR,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_empty_config_is_valid(self) -> None:
        cfg = DatamallConfig()
        assert cfg.server.port == 8080
        assert cfg.upstream.api_key is None
        assert cfg.upstream.base_url.endswith("/ltaodataservice")
        assert cfg.analytics.history_capacity == 100
        assert not cfg.analytics.remote.usable

    def test_load_without_file(self) -> None:
        cfg = load_config(None)
        assert cfg.server.host == "0.0.0.0"


class TestEnvOverrides:
    def test_env_values_applied(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LTA_API_KEY", "ENV-KEY")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("ANALYTICS_FILE", "/tmp/a.json")
        cfg = load_config(None)
        assert cfg.upstream.api_key == "ENV-KEY"
        assert cfg.server.port == 9000
        assert cfg.analytics.local_file == "/tmp/a.json"

    def test_env_wins_over_file(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("upstream:\n  api_key: FILE-KEY\nserver:\n  port: 7000\n", encoding="utf-8")
        monkeypatch.setenv("LTA_API_KEY", "ENV-KEY")
        cfg = load_config(str(path))
        assert cfg.upstream.api_key == "ENV-KEY"
        assert cfg.server.port == 7000

    def test_database_url_enables_remote(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FIREBASE_DATABASE_URL", "https://db.example.test/")
        cfg = load_config(None)
        assert cfg.analytics.remote.enabled
        assert cfg.analytics.remote.url == "https://db.example.test"
        assert cfg.analytics.remote.usable

    def test_url_in_file_enables_remote(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("FIREBASE_DATABASE_URL", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("analytics:\n  remote:\n    url: https://db.example.test\n", encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.analytics.remote.enabled is True
        assert cfg.analytics.remote.usable

    def test_no_url_means_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("FIREBASE_DATABASE_URL", raising=False)
        cfg = load_config(None)
        assert cfg.analytics.remote.enabled is False
        assert not cfg.analytics.remote.usable

    def test_file_can_keep_remote_disabled(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("analytics:\n  remote:\n    enabled: false\n", encoding="utf-8")
        monkeypatch.setenv("FIREBASE_DATABASE_URL", "https://db.example.test")
        cfg = load_config(str(path))
        assert not cfg.analytics.remote.usable


class TestFileLoading:
    def test_placeholders_expanded(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_TOKEN", "tok")
        path = tmp_path / "config.yaml"
        path.write_text("analytics:\n  import_token: ${MY_TOKEN}\n", encoding="utf-8")
        assert load_config(str(path)).analytics.import_token == "tok"

    def test_unexpanded_placeholder_is_unset(self, tmp_path: Any) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("upstream:\n  api_key: ${NOT_SET_ANYWHERE_12345}\n", encoding="utf-8")
        assert load_config(str(path)).upstream.api_key is None

    def test_missing_file(self, tmp_path: Any) -> None:
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_wrong_extension(self, tmp_path: Any) -> None:
        path = tmp_path / "config.json"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_validation_errors_reported(self, tmp_path: Any) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 99999\nupstream:\n  base_url: ftp://x\n", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert "2 error(s)" in str(exc_info.value)

    def test_top_level_must_be_mapping(self, tmp_path: Any) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(str(path))


class TestFindConfigFile:
    def test_env_var_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, "/etc/datamall.yaml")
        assert find_config_file() == "/etc/datamall.yaml"

    def test_cwd_search(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert find_config_file() is None
        (tmp_path / "config.yml").write_text("{}", encoding="utf-8")
        found = find_config_file()
        assert found is not None
        assert os.path.samefile(found, tmp_path / "config.yml")
