"""Configuration management for Comment Lens."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class LLMConfig:
    """Language model configuration."""
    enabled: bool = True
    provider: str = "gemini"  # gemini / deepseek / openai
    model: str = "gemini-1.5-flash"
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout_seconds: float = 30.0


@dataclass
class SentimentConfig:
    """Sentiment classifier configuration."""
    batch_size: int = 10
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_low_confidence: bool = False
    low_confidence_threshold: float = 0.5


@dataclass
class ThemeConfig:
    """Theme clustering configuration."""
    min_cluster_size: int = 2
    max_clusters: int = 10
    similarity_threshold: float = 0.15
    min_keyword_frequency: int = 2
    max_keywords: int = 50
    small_set_size: int = 6


@dataclass
class SummaryConfig:
    """Summary generator configuration."""
    max_retries: int = 3
    retry_delay: float = 1.0
    min_words: int = 75
    max_words: int = 150
    min_quality: float = 0.6


@dataclass
class JobConfig:
    """Job orchestrator configuration."""
    max_concurrent_jobs: int = 3
    max_attempts: int = 3
    tick_interval: float = 1.0
    shutdown_timeout: float = 30.0
    finished_job_retention_hours: int = 24


@dataclass
class CacheConfig:
    """Result cache configuration."""
    enabled: bool = True
    ttl_seconds: int = 3600
    max_entries: int = 1000


@dataclass
class AnalysisConfig:
    """Request-level analysis settings."""
    min_comments: int = 0
    result_retention_days: int = 7


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str = "./comment_lens.db"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    rich: bool = True
    file: str = ""


@dataclass
class LLMCredentials:
    """LLM API credentials from environment."""
    gemini_api_key: str = ""
    deepseek_api_key: str = ""
    openai_api_key: str = ""

    @classmethod
    def from_env(cls) -> "LLMCredentials":
        """Load credentials from environment variables."""
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            deepseek_api_key=os.getenv("DEEPSEEK_API_KEY", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        )

    def get_key_for_provider(self, provider: str) -> str:
        """Get API key for a specific provider."""
        mapping = {
            "gemini": self.gemini_api_key,
            "deepseek": self.deepseek_api_key,
            "openai": self.openai_api_key,
        }
        return mapping.get(provider, "")

    def has_key_for_provider(self, provider: str) -> bool:
        """Check if API key is configured for provider."""
        return bool(self.get_key_for_provider(provider))


@dataclass
class Config:
    """Main configuration container."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    sentiment: SentimentConfig = field(default_factory=SentimentConfig)
    themes: ThemeConfig = field(default_factory=ThemeConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    jobs: JobConfig = field(default_factory=JobConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Credentials (loaded from environment)
    llm_credentials: LLMCredentials = field(default_factory=LLMCredentials.from_env)


# Section name -> dataclass, in the order they appear in the YAML file
SECTIONS = {
    "llm": LLMConfig,
    "sentiment": SentimentConfig,
    "themes": ThemeConfig,
    "summary": SummaryConfig,
    "jobs": JobConfig,
    "cache": CacheConfig,
    "analysis": AnalysisConfig,
    "database": DatabaseConfig,
    "logging": LoggingConfig,
}


def _dict_to_dataclass(data: dict[str, Any] | None, cls: type) -> Any:
    """Convert a dictionary to a dataclass instance, ignoring unknown keys."""
    if not data:
        return cls()

    field_names = set(cls.__dataclass_fields__)
    kwargs = {key: value for key, value in data.items() if key in field_names}
    return cls(**kwargs)


def config_from_dict(data: dict[str, Any]) -> Config:
    """Build a Config from a parsed YAML mapping."""
    sections = {
        name: _dict_to_dataclass(data.get(name), cls)
        for name, cls in SECTIONS.items()
    }
    return Config(**sections, llm_credentials=LLMCredentials.from_env())


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, loads config/local.yaml
            or config/default.yaml, whichever exists first.

    Returns:
        Config object with all settings.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    if config_path is None:
        local_config = Path("config/local.yaml")
        default_config = Path("config/default.yaml")

        if local_config.exists():
            config_path = local_config
        elif default_config.exists():
            config_path = default_config
        else:
            return Config()

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    return config_from_dict(data)


# Config instance for the CLI entry point (lazy loaded). Library code
# receives its Config explicitly.
_config: Config | None = None


def get_config() -> Config:
    """Get the CLI config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: str | Path | None = None) -> Config:
    """Reload configuration from file."""
    global _config
    _config = load_config(config_path)
    return _config
