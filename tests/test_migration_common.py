"""
Tests for config loading and the HTTP session.
"""

import pytest

from migration_common import ConfigError, load_config, make_session


class TestLoadConfig:
    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "m.yml"
        path.write_text(
            "project: {}\nbucket: {name: b}\ndatasets: [{name: a}]\npull_request: {}\n", encoding="utf-8"
        )
        monkeypatch.setenv("MIGRATION_CONFIG", str(path))
        assert load_config()["bucket"]["name"] == "b"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yml")

    def test_missing_sections(self, tmp_path):
        path = tmp_path / "m.yml"
        path.write_text("project: {}\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="bucket"):
            load_config(path)

    def test_duplicate_dataset_names(self, tmp_path):
        path = tmp_path / "m.yml"
        path.write_text(
            "project: {}\nbucket: {}\ndatasets: [{name: a}, {name: a}]\npull_request: {}\n", encoding="utf-8"
        )
        with pytest.raises(ConfigError, match="unique"):
            load_config(path)

    def test_covers_must_name_a_dataset(self, tmp_path):
        path = tmp_path / "m.yml"
        path.write_text(
            "project: {}\nbucket: {}\ndatasets: [{name: a.sha256, covers: a}]\npull_request: {}\n",
            encoding="utf-8",
        )
        with pytest.raises(ConfigError, match="unknown dataset"):
            load_config(path)


class TestMakeSession:
    def test_retry_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_HTTP_RETRIES", "2")
        s = make_session()
        retry = s.get_adapter("https://storage.googleapis.com").max_retries
        assert retry.total == 2
        assert 503 in retry.status_forcelist
        assert "POST" not in retry.allowed_methods
        assert s.headers["User-Agent"].startswith("stacks-v1-v2-migration/")
