"""Unit tests for settings resolution (env > YAML > defaults)."""

import pytest

from reqloom.core import config


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("REQLOOM_CONFIG_DIR", str(tmp_path))
    for name in ("DATABASE_URL", "REQLOOM_LLM_PROVIDER", "REQLOOM_QUEUE_BACKEND", "QSTASH_TOKEN",
                 "REQLOOM_EMBED_DIM"):
        monkeypatch.delenv(name, raising=False)
    config.reload_configs()
    yield tmp_path
    config.reload_configs()


class TestSettings:

    def test_defaults_without_yaml(self, config_dir):
        settings = config.build_settings()

        assert settings.queue.backend == "local"
        assert settings.limits.max_input_chars == 20000
        assert settings.limits.enforce_soft_cap is False

    def test_yaml_values(self, config_dir):
        (config_dir / "reqloom.yaml").write_text(
            "reqloom:\n"
            "  inference:\n"
            "    provider: ollama\n"
            "    timeout_seconds: 30\n"
            "  versions:\n"
            "    soft_cap: 3\n"
            "    enforce_soft_cap: true\n"
        )

        settings = config.build_settings()

        assert settings.inference.provider == "ollama"
        assert settings.inference.timeout_seconds == 30.0
        assert settings.limits.soft_version_cap == 3
        assert settings.limits.enforce_soft_cap is True

    def test_env_wins_over_yaml(self, config_dir, monkeypatch):
        (config_dir / "reqloom.yaml").write_text("reqloom:\n  database:\n    url: sqlite:///yaml.db\n")
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/reqloom")

        assert config.build_settings().database.url == "postgresql://db/reqloom"

    def test_get_config_value_missing_levels(self, config_dir):
        (config_dir / "reqloom.yaml").write_text("reqloom:\n  chat: 5\n")

        assert config.get_config_value("reqloom", "chat", "history_window", default=20) == 20
        assert config.get_config_value("nope", default="x") == "x"

    def test_broken_yaml_falls_back(self, config_dir):
        (config_dir / "reqloom.yaml").write_text("reqloom: [unclosed")
        assert config.build_settings().queue.backend == "local"

    def test_embedding_dim_from_yaml_reaches_settings(self, config_dir):
        (config_dir / "reqloom.yaml").write_text("reqloom:\n  embedding:\n    dim: 768\n")

        assert config.get_embedding_dim() == 768
        assert config.build_settings().embedding.dim == 768

    def test_embedding_dim_env_wins(self, config_dir, monkeypatch):
        (config_dir / "reqloom.yaml").write_text("reqloom:\n  embedding:\n    dim: 768\n")
        monkeypatch.setenv("REQLOOM_EMBED_DIM", "384")

        assert config.get_embedding_dim() == 384
        assert config.build_settings().embedding.dim == 384

    def test_embedding_dim_default(self, config_dir):
        assert config.get_embedding_dim() == 1536
