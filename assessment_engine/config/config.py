"""
Engine configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.
    
    All settings have sensible defaults for development; the rules
    directory is normally overridden per deployment.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Application
    app_name: str = Field(default="Branching Assessment Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    
    # Rule documents
    rules_dir: Path = Field(
        default=Path("public") / "rules",
        description="Directory holding '<region> region.json' rule documents"
    )
    rules_index_file: str = Field(default="index.json", description="Rules index filename")
    rule_cache_enabled: bool = Field(
        default=True,
        description="Memoize validated rule documents keyed by file hash"
    )
    strict_answer_values: bool = Field(
        default=False,
        description="Treat instructional text in answer values as a fatal validation issue"
    )
    
    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )
    
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"
    
    def get_safe_config_dict(self) -> dict:
        """Return configuration dict suitable for logging."""
        config = self.model_dump()
        config["rules_dir"] = str(self.rules_dir)
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached engine settings.
    
    Settings are loaded once and cached for the process lifetime.
    Pass explicit values to loaders and validators for testability.
    """
    return Settings()
