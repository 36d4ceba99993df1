"""
Configuration management for the lesson tutor.
Loads from config/tutor.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class LLMConfig(BaseSettings):
    """LLM provider configuration."""
    provider: str = Field(default="openai")  # openai, anthropic
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    default_model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.6)
    max_tokens: int = Field(default=600)
    timeout_seconds: float = Field(default=30.0)

    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore", populate_by_name=True)


class TutorConfig(BaseSettings):
    """Turn-processing rules."""
    initial_target_mastery: float = Field(default=0.3)
    max_attempts_per_moment: int = Field(default=3)
    summary_max_chars: int = Field(default=600)
    recent_turns: int = Field(default=3)
    question_prefix_chars: int = Field(default=20)
    personalize_after_answers: int = Field(default=3)

    model_config = SettingsConfigDict(env_prefix="TUTOR_", extra="ignore")

    @field_validator("initial_target_mastery")
    @classmethod
    def _mastery_in_range(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("initial_target_mastery must be within [0, 1]")
        return value


class PromptConfig(BaseSettings):
    """Prompt section budgets (tokens)."""
    system_prompt_path: Path = Field(default=Path("config/prompts/tutor_system.md"))
    lesson_facts_tokens: int = Field(default=100)
    target_tokens: int = Field(default=250)
    moment_tokens: int = Field(default=200)
    summary_tokens: int = Field(default=250)
    recent_turns_tokens: int = Field(default=350)
    turn_message_tokens: int = Field(default=100)

    model_config = SettingsConfigDict(env_prefix="PROMPT_", extra="ignore")


class SessionConfig(BaseSettings):
    """Session storage and concurrency configuration."""
    db_path: Path = Field(default=Path("data/sessions.sqlite"), alias="SESSION_DB_PATH")
    lessons_dir: Path = Field(default=Path("lessons"), alias="LESSONS_DIR")
    reject_concurrent_turns: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore", populate_by_name=True)


class TutorSettings(BaseSettings):
    """Main tutor configuration."""
    env: str = Field(default="dev", alias="TUTOR_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    tutor: TutorConfig = Field(default_factory=TutorConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "TutorSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/tutor.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("tutor", {}) or {}

        # "rules" is the YAML name for the turn-processing block
        if "rules" in config_dict:
            config_dict["tutor"] = config_dict.pop("rules")

        return cls(**config_dict)


# Global settings instance
_settings: Optional[TutorSettings] = None


def get_settings() -> TutorSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = TutorSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
