"""Configuration management using Pydantic for validation."""

from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """LLM configuration."""

    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "openai/gpt-4.1-mini"
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: int = 120
    retry_attempts: int = 3
    base_url: str | None = "https://openrouter.ai/api/v1"
    api_key: str | None = None
    app_url: str = "https://realmsync.app"
    app_title: str = "Realm Sync"

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Temperature must be between 0 and 1")
        return v


class ChunkingConfig(BaseSettings):
    """Character-based chunking configuration."""

    max_chunk_chars: int = Field(default=12000, gt=0)
    overlap_chars: int = Field(default=800, ge=0)
    min_chunk_chars: int = Field(default=1000, ge=0)

    @model_validator(mode="after")
    def validate_overlap(self) -> "ChunkingConfig":
        if self.overlap_chars >= self.max_chunk_chars:
            raise ValueError("overlap_chars must be smaller than max_chunk_chars")
        return self


class ExtractionConfig(BaseSettings):
    """Entity extraction configuration."""

    prompt_template: str = "config/extraction_prompts.yaml"
    prompt_version: str = "v1"
    llm: LLMConfig = Field(default_factory=LLMConfig)
    entity_types: List[str] = Field(
        default=["character", "location", "item", "concept", "event"]
    )


class CacheConfig(BaseSettings):
    """LLM response cache configuration."""

    enabled: bool = True
    ttl_days: float = Field(default=7, gt=0)

    @property
    def ttl_ms(self) -> int:
        return int(self.ttl_days * 24 * 60 * 60 * 1000)


class ReviewConfig(BaseSettings):
    """Manual review helpers configuration."""

    fuzzy_similar: bool = False
    similarity_threshold: float = Field(default=0.90, ge=0.0, le=1.0)


class CurationConfig(BaseSettings):
    """Curation configuration."""

    enable_audit_trail: bool = True
    audit_path: str = "logs/curation_audit.jsonl"


class StorageConfig(BaseSettings):
    """Document store configuration."""

    database_path: str = "data/canon.db"


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "logs/canon.log"
    rotation: str = "10 MB"
    retention: str = "1 week"


class Config(BaseSettings):
    """Canon keeper settings: YAML file first, then environment overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    curation: CurationConfig = Field(default_factory=CurationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Provider credentials and model override, read from the environment only
    openrouter_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    model: str = ""

    @staticmethod
    def _merge_sections(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively overlay ``overrides`` on ``base``; nested sections merge key by key."""
        result: Dict[str, Any] = dict(base)
        for key, value in overrides.items():
            current = result.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                result[key] = Config._merge_sections(current, value)
            else:
                result[key] = value
        return result

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "Config":
        """Build settings from a YAML file with environment values layered on top.

        Environment variables (and ``.env``) beat the file, and the file beats the
        model defaults. Only environment values that differ from a default are
        applied, so an unset variable never hides a value from the file.

        Raises:
            FileNotFoundError: If the YAML file is missing
            ValueError: If the YAML root is not a mapping
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"YAML config root must be a mapping/dict: {path}")

        from_env = cls().model_dump(exclude_defaults=True)
        return cls(**cls._merge_sections(data, from_env))

    def resolved_llm(self) -> LLMConfig:
        """Return the extraction LLM config with credentials and model from env applied."""
        llm = self.extraction.llm
        updates: Dict[str, Any] = {}
        if self.model:
            updates["model"] = self.model
        if not llm.api_key:
            if llm.provider == "anthropic":
                key = self.anthropic_api_key
            else:
                key = self.openrouter_api_key or self.openai_api_key
            if key:
                updates["api_key"] = key
        return llm.model_copy(update=updates) if updates else llm

    def validate_config(self) -> None:
        """Validate configuration settings.

        Raises:
            ValueError: If configuration is invalid
        """
        llm = self.resolved_llm()
        if llm.provider == "anthropic" and not llm.api_key:
            raise ValueError("Anthropic API key required when using anthropic provider")
        if llm.provider == "openai" and not llm.api_key:
            if "openrouter.ai" in (llm.base_url or "") or "api.openai.com" in (llm.base_url or ""):
                raise ValueError("OPENROUTER_API_KEY (or OPENAI_API_KEY) required for extraction")

        unknown = set(self.extraction.entity_types) - {
            "character",
            "location",
            "item",
            "concept",
            "event",
        }
        if unknown:
            raise ValueError(f"Unsupported entity types: {sorted(unknown)}")


_config: Config | None = None


def get_config() -> Config:
    """Return the settings installed by ``load_config``.

    Raises:
        RuntimeError: If ``load_config`` has not been called yet
    """
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call load_config() first.")
    return _config


def load_config(yaml_path: str | Path = "config/config.yaml", *, validate: bool = True) -> Config:
    """Read ``yaml_path`` and install the result as the process-wide settings.

    Pass ``validate=False`` for commands that never reach the LLM provider.
    """
    global _config
    config = Config.from_yaml(yaml_path)
    if validate:
        config.validate_config()
    _config = config
    return config


def reset_config() -> None:
    global _config
    _config = None
