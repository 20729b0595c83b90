"""
Configuration for Cortex.

Settings come from three layers, later ones winning:
1. Dataclass defaults below
2. config.yaml under the base path (PyYAML, safe_load)
3. Environment variables (CORTEX_*, provider API keys)

All tunable constants of the retrieval, decay and dream machinery live
here so they can be adjusted without touching the algorithms.
"""

import os
import logging
from dataclasses import dataclass, field, asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".cortex"
CONFIG_FILENAME = "config.yaml"

MIN_DECAY = 0.05
MAX_CONTENT_LENGTH = 5000
MAX_SUMMARY_LENGTH = 500


@dataclass
class DatabaseConfig:
    path: Optional[str] = None  # defaults to <base_path>/palace.sqlite
    enable_wal: bool = True


@dataclass
class EmbeddingConfig:
    provider: Optional[str] = None  # voyage | openai | venice | ollama
    api_key: Optional[str] = None
    model: Optional[str] = None
    dimensions: Optional[int] = None
    base_url: Optional[str] = None
    timeout: int = 30
    cache_size: int = 200
    cache_ttl_seconds: int = 30 * 60


@dataclass
class LLMSettings:
    provider: Optional[str] = None  # anthropic | openai | ollama
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: int = 60
    max_tokens: int = 500
    temperature: float = 0.7


@dataclass
class RetrievalConfig:
    weight_recency: float = 1.0
    weight_relevance: float = 2.0
    weight_tags: float = 1.0
    weight_importance: float = 2.0
    weight_vector: float = 3.0
    recency_base: float = 0.995
    default_limit: int = 5
    max_limit: int = 100
    overfetch_factor: int = 3
    min_decay: float = 0.1
    vector_threshold: float = 0.3
    entity_threshold: float = 0.3
    graph_min_strength: float = 0.2
    access_decay_boost: float = 0.1
    importance_boost: float = 0.02
    hebbian_increment: float = 0.05
    bond_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "causes": 1.0,
        "supports": 0.9,
        "contradicts": 0.8,
        "elaborates": 0.6,
        "relates": 0.5,
        "follows": 0.4,
    })
    max_auto_links: int = 5


@dataclass
class DecayConfig:
    rates: Dict[str, float] = field(default_factory=lambda: {
        "episodic": 0.93,
        "procedural": 0.97,
        "semantic": 0.98,
        "self_model": 0.99,
    })
    min_decay: float = MIN_DECAY
    cutoff_hours: float = 24.0


@dataclass
class DreamConfig:
    interval_hours: float = 6.0
    decay_interval_hours: float = 24.0
    initial_delay_seconds: float = 120.0
    phase_timeout_seconds: float = 120.0
    importance_threshold: float = 5.0
    emergence_max_chars: int = 270
    emergence_rate_limit_minutes: int = 720
    compaction_age_days: int = 7
    compaction_max_decay: float = 0.3
    compaction_max_importance: float = 0.5


@dataclass
class TaskConfig:
    workers: int = 2
    queue_size: int = 256
    synchronous: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class CortexConfig:
    """Top-level configuration for a Cortex instance."""
    base_path: Path = DEFAULT_BASE_PATH
    hash_prefix: str = "clude"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMSettings = field(default_factory=LLMSettings)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    dream: DreamConfig = field(default_factory=DreamConfig)
    tasks: TaskConfig = field(default_factory=TaskConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def db_path(self) -> Path:
        if self.database.path:
            return Path(self.database.path)
        return Path(self.base_path) / "palace.sqlite"

    def validate(self) -> None:
        """
        Fail loudly on configuration that cannot work.

        Raises:
            ConfigurationError: impossible id prefix, rates or limits
        """
        prefix = self.hash_prefix
        if not prefix or not prefix.replace("_", "").isalnum() or not prefix.islower():
            raise ConfigurationError(
                f"Invalid hash_prefix {prefix!r}: must be lowercase alphanumeric"
            )
        for memory_type, rate in self.decay.rates.items():
            if not 0 < rate <= 1:
                raise ConfigurationError(f"Decay rate for {memory_type} must be in (0, 1], got {rate}")
        if not 0 <= self.decay.min_decay < 1:
            raise ConfigurationError(f"decay.min_decay must be in [0, 1), got {self.decay.min_decay}")
        if not 0 < self.retrieval.recency_base < 1:
            raise ConfigurationError("retrieval.recency_base must be in (0, 1)")
        if self.tasks.workers < 1 or self.tasks.queue_size < 1:
            raise ConfigurationError("tasks.workers and tasks.queue_size must be positive")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["base_path"] = str(self.base_path)
        return data


def _merge_section(section: Any, values: Dict[str, Any]) -> None:
    """Overlay a YAML mapping onto a config dataclass, ignoring unknown keys."""
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {type(section).__name__}.{key}")
            continue
        current = getattr(section, key)
        if is_dataclass(current) and isinstance(value, dict):
            _merge_section(current, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            current.update(value)
        else:
            setattr(section, key, value)


def read_config_file(base_path: Union[str, Path]) -> Dict[str, Any]:
    """Load config.yaml as a dict.

    Args:
        base_path: Base directory containing config.yaml

    Returns:
        Parsed mapping. Returns empty dict if the file doesn't exist or
        parsing fails.
    """
    config_path = Path(base_path) / CONFIG_FILENAME
    if not config_path.exists():
        return {}

    import yaml
    try:
        data = yaml.safe_load(config_path.read_text())
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to read {config_path}: {e}")
        return {}

    return data if isinstance(data, dict) else {}


def _apply_env(config: CortexConfig) -> None:
    env = os.environ
    if env.get("CORTEX_DB_PATH"):
        config.database.path = env["CORTEX_DB_PATH"]
    if env.get("CORTEX_EMBEDDING_PROVIDER"):
        config.embedding.provider = env["CORTEX_EMBEDDING_PROVIDER"]
    if env.get("CORTEX_LLM_PROVIDER"):
        config.llm.provider = env["CORTEX_LLM_PROVIDER"]

    # Provider keys only fill gaps left by config.yaml
    embedding_keys = {
        "voyage": "VOYAGE_API_KEY",
        "openai": "OPENAI_API_KEY",
        "venice": "VENICE_API_KEY",
    }
    key_var = embedding_keys.get(config.embedding.provider or "")
    if key_var and not config.embedding.api_key and env.get(key_var):
        config.embedding.api_key = env[key_var]

    llm_keys = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}
    key_var = llm_keys.get(config.llm.provider or "")
    if key_var and not config.llm.api_key and env.get(key_var):
        config.llm.api_key = env[key_var]


def load_config(base_path: Optional[Union[str, Path]] = None) -> CortexConfig:
    """
    Build a CortexConfig from defaults, config.yaml and the environment.

    Args:
        base_path: Data directory. Falls back to CORTEX_BASE_PATH, then ~/.cortex

    Raises:
        ConfigurationError: if the merged configuration is invalid
    """
    if base_path is None:
        base_path = os.getenv("CORTEX_BASE_PATH") or DEFAULT_BASE_PATH

    config = CortexConfig(base_path=Path(base_path))
    data = read_config_file(base_path)
    data.pop("base_path", None)
    if data:
        _merge_section(config, data)

    _apply_env(config)
    config.validate()
    return config
