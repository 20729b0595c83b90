"""
Tests for configuration loading and validation

Tests cover:
- Defaults and derived paths
- config.yaml overlay (nested sections, unknown keys, bad files)
- Environment overrides and API key gap filling
- Validation errors
"""

from pathlib import Path

import pytest

from cortex.config import CortexConfig, load_config, read_config_file
from cortex.exceptions import ConfigurationError

PROVIDER_VARS = (
    "CORTEX_BASE_PATH", "CORTEX_DB_PATH", "CORTEX_EMBEDDING_PROVIDER", "CORTEX_LLM_PROVIDER",
    "VOYAGE_API_KEY", "OPENAI_API_KEY", "VENICE_API_KEY", "ANTHROPIC_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in PROVIDER_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    (tmp_path / "config.yaml").write_text(text)


class TestDefaults:
    def test_defaults(self, tmp_path):
        config = load_config(tmp_path)

        assert config.hash_prefix == "clude"
        assert config.db_path == tmp_path / "palace.sqlite"
        assert config.decay.rates["episodic"] == 0.93
        assert config.retrieval.weight_vector == 3.0
        assert config.dream.importance_threshold == 5.0
        assert config.embedding.provider is None
        assert config.llm.provider is None

    def test_explicit_db_path(self, tmp_path):
        config = CortexConfig(base_path=tmp_path)
        config.database.path = str(tmp_path / "other.db")
        assert config.db_path == Path(tmp_path / "other.db")

    def test_base_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORTEX_BASE_PATH", str(tmp_path))
        assert load_config().base_path == tmp_path

    def test_to_dict(self, tmp_path):
        data = CortexConfig(base_path=tmp_path).to_dict()
        assert data["base_path"] == str(tmp_path)
        assert data["retrieval"]["bond_multipliers"]["causes"] == 1.0


class TestConfigFile:
    """Test suite for the YAML layer"""

    def test_nested_overlay(self, tmp_path):
        _write(tmp_path, """
hash_prefix: mem
embedding:
  provider: ollama
  model: nomic-embed-text
decay:
  rates:
    episodic: 0.9
retrieval:
  weight_vector: 4.0
""")
        config = load_config(tmp_path)

        assert config.hash_prefix == "mem"
        assert config.embedding.provider == "ollama"
        assert config.embedding.model == "nomic-embed-text"
        assert config.decay.rates["episodic"] == 0.9
        # Unmentioned rates keep their defaults
        assert config.decay.rates["semantic"] == 0.98
        assert config.retrieval.weight_vector == 4.0

    def test_unknown_keys_ignored(self, tmp_path):
        _write(tmp_path, "nonsense: 1\nretrieval:\n  bogus: true\n")
        config = load_config(tmp_path)
        assert not hasattr(config, "nonsense")
        assert not hasattr(config.retrieval, "bogus")

    def test_missing_and_bad_files(self, tmp_path):
        assert read_config_file(tmp_path) == {}

        _write(tmp_path, "key: [unclosed")
        assert read_config_file(tmp_path) == {}

        _write(tmp_path, "- just\n- a list\n")
        assert read_config_file(tmp_path) == {}

    def test_invalid_file_values_raise(self, tmp_path):
        _write(tmp_path, "hash_prefix: Bad-Prefix\n")
        with pytest.raises(ConfigurationError):
            load_config(tmp_path)


class TestEnvironment:
    def test_overrides(self, tmp_path, monkeypatch):
        _write(tmp_path, "embedding:\n  provider: ollama\n")
        monkeypatch.setenv("CORTEX_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("CORTEX_EMBEDDING_PROVIDER", "voyage")
        monkeypatch.setenv("CORTEX_LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("VOYAGE_API_KEY", "vk")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "ak")

        config = load_config(tmp_path)

        assert config.db_path == tmp_path / "env.db"
        assert (config.embedding.provider, config.embedding.api_key) == ("voyage", "vk")
        assert (config.llm.provider, config.llm.api_key) == ("anthropic", "ak")

    def test_keys_only_fill_gaps(self, tmp_path, monkeypatch):
        _write(tmp_path, "embedding:\n  provider: openai\n  api_key: from-file\n")
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")

        assert load_config(tmp_path).embedding.api_key == "from-file"

    def test_key_for_other_provider_unused(self, tmp_path, monkeypatch):
        _write(tmp_path, "embedding:\n  provider: ollama\n")
        monkeypatch.setenv("VOYAGE_API_KEY", "vk")

        assert load_config(tmp_path).embedding.api_key is None


class TestValidation:
    @pytest.mark.parametrize("mutate", [
        lambda c: setattr(c, "hash_prefix", "Clude"),
        lambda c: setattr(c, "hash_prefix", "clu-de"),
        lambda c: setattr(c, "hash_prefix", ""),
        lambda c: c.decay.rates.update(episodic=0.0),
        lambda c: c.decay.rates.update(semantic=1.5),
        lambda c: setattr(c.decay, "min_decay", 1.0),
        lambda c: setattr(c.retrieval, "recency_base", 1.0),
        lambda c: setattr(c.tasks, "workers", 0),
        lambda c: setattr(c.tasks, "queue_size", 0),
    ])
    def test_invalid(self, tmp_path, mutate):
        config = CortexConfig(base_path=tmp_path)
        mutate(config)
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_valid_prefixes(self, tmp_path):
        for prefix in ("clude", "mem", "agent_7"):
            CortexConfig(base_path=tmp_path, hash_prefix=prefix).validate()

    def test_cortex_rejects_invalid_config(self, tmp_path, palace):
        from cortex import Cortex

        config = CortexConfig(base_path=tmp_path, hash_prefix="NOPE")
        with pytest.raises(ConfigurationError):
            Cortex(config, backend=palace)
