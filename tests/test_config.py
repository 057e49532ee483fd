"""
Tests for configuration loading and snapshots.
"""

import json
from dataclasses import FrozenInstanceError

import pytest


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    return monkeypatch


class TestConfig:
    """Tests for Config."""

    def test_defaults(self, tmp_path, clean_env):
        """Test defaults when no files or env vars exist."""
        from chunkscribe.config import Config

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.max_concurrency == 4
        assert config.max_attempts == 5
        assert config.text_chunk_chars == 5000
        assert config.gap_markers is False
        assert config.gemini_api_key == ""

    def test_settings_file_precedence(self, tmp_path, clean_env):
        """Test that the user settings file overrides the project one."""
        from chunkscribe.config import Config

        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (tmp_path / "settings.json").write_text(json.dumps({"max_concurrency": 8, "max_attempts": 2}))
        (data_dir / "settings.json").write_text(json.dumps({"max_concurrency": 6}))

        config = Config.load(data_dir=data_dir, project_dir=tmp_path)

        assert config.max_concurrency == 6
        assert config.max_attempts == 2

    def test_settings_coerced_to_default_types(self, tmp_path, clean_env):
        """Test that '3' becomes 3 and invalid values are ignored."""
        from chunkscribe.config import Config

        (tmp_path / "settings.json").write_text(json.dumps({
            "max_concurrency": "3",
            "retry_base_delay": 2,
            "gap_markers": "true",
            "max_attempts": "many",
        }))

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.max_concurrency == 3
        assert config.retry_base_delay == 2.0
        assert config.gap_markers is True
        assert config.max_attempts == 5

    def test_broken_settings_file_ignored(self, tmp_path, clean_env):
        from chunkscribe.config import Config

        (tmp_path / "settings.json").write_text("{not json")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.max_concurrency == 4

    def test_env_file_key(self, tmp_path, clean_env):
        """Test that the API key is read from .env."""
        from chunkscribe.config import Config

        (tmp_path / ".env").write_text("# comment\nexport GEMINI_API_KEY='from-file'\nOTHER=1\n")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.gemini_api_key == "from-file"

    def test_gemini_key_wins_within_env_file(self, tmp_path, clean_env):
        """Test that GEMINI_API_KEY beats GOOGLE_API_KEY regardless of line order."""
        from chunkscribe.config import Config

        (tmp_path / ".env").write_text("GEMINI_API_KEY=gemini\nGOOGLE_API_KEY=google\n")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.gemini_api_key == "gemini"

    def test_google_key_used_when_alone_in_env_file(self, tmp_path, clean_env):
        from chunkscribe.config import Config

        (tmp_path / ".env").write_text("GOOGLE_API_KEY=google\n")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.gemini_api_key == "google"

    def test_environment_overrides_env_file(self, tmp_path, clean_env):
        from chunkscribe.config import Config

        (tmp_path / ".env").write_text("GEMINI_API_KEY=from-file\n")
        clean_env.setenv("GOOGLE_API_KEY", "google-key")
        clean_env.setenv("GEMINI_API_KEY", "gemini-key")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.gemini_api_key == "gemini-key"

    def test_google_api_key_fallback(self, tmp_path, clean_env):
        from chunkscribe.config import Config

        clean_env.setenv("GOOGLE_API_KEY", "google-key")

        config = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)

        assert config.gemini_api_key == "google-key"

    def test_update_overrides(self, tmp_path):
        """Test command-line style overrides; None means unset."""
        from chunkscribe.config import Config

        config = Config(data_dir=tmp_path)
        config.update(max_concurrency=2, max_attempts=None)

        assert config.max_concurrency == 2
        assert config.max_attempts == 5
        with pytest.raises(KeyError):
            config.update(not_a_setting=1)

    def test_save_settings_round_trip(self, tmp_path, clean_env):
        """Test that saved settings load back and never include the key."""
        from chunkscribe.config import Config

        config = Config(data_dir=tmp_path / "data")
        config.gemini_api_key = "secret"
        config.max_concurrency = 7
        config.save_settings()

        saved = json.loads(config.settings_file.read_text())
        assert "gemini_api_key" not in saved

        reloaded = Config.load(data_dir=tmp_path / "data", project_dir=tmp_path)
        assert reloaded.max_concurrency == 7

    def test_snapshot_is_immutable(self, tmp_path):
        """Test that snapshots are frozen and detached from the config."""
        from chunkscribe.config import Config

        config = Config(data_dir=tmp_path)
        config.gemini_api_key = "k"
        snapshot = config.snapshot()

        config.max_concurrency = 9

        assert snapshot.max_concurrency == 4
        assert snapshot.gemini_api_key == "k"
        assert snapshot.metrics_file == str(tmp_path / "metrics.jsonl")
        with pytest.raises(FrozenInstanceError):
            snapshot.max_concurrency = 1

    @pytest.mark.parametrize("key,value", [
        ("max_concurrency", 0),
        ("max_attempts", 0),
        ("text_chunk_chars", -1),
        ("retry_after_buffer", -1.0),
        ("overlap_min_words", 0),
        ("overlap_min_words", 20),
    ])
    def test_snapshot_validates(self, tmp_path, key, value):
        from chunkscribe.config import Config

        config = Config(data_dir=tmp_path)
        setattr(config, key, value)

        with pytest.raises(ValueError):
            config.snapshot()
