import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

logger = logging.getLogger("aiquery.config")

# --- Environment-based Settings ---

class QuerySettings(BaseSettings):
    """
    Engine settings loaded from AIQUERY_* environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(
        env_prefix='AIQUERY_', env_file='.env', env_file_encoding='utf-8', extra='ignore'
    )

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the package logger (e.g., DEBUG, INFO, WARNING)")
    LOG_FILE: Optional[str] = Field(None, description="Optional: JSON log file with rotation.")
    CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a YAML file with provider presets.")
    DEFAULT_PROVIDER: str = Field("mock", description="Provider used when a call does not name one.")

    # --- Execution defaults ---
    DEFAULT_TIMEOUT: float = Field(15.0, gt=0, description="Per-attempt deadline in seconds.")
    STREAM_TIMEOUT: float = Field(30.0, gt=0, description="Per-attempt deadline for streaming calls.")
    DEFAULT_RETRY: int = Field(1, ge=0, description="Extra attempts after the first one.")
    DEFAULT_TEMPERATURE: float = Field(0.0, ge=0)
    STREAM_RETRY_DELAY: float = Field(0.5, ge=0, description="Pause between streaming retries.")

    # --- Provider endpoints & keys ---
    OPENAI_API_KEY: Optional[str] = Field(None)
    OPENAI_BASE_URL: str = Field("https://api.openai.com/v1")
    GROQ_API_KEY: Optional[str] = Field(None)
    GROQ_BASE_URL: str = Field("https://api.groq.com/openai/v1")
    LOCAL_BASE_URL: str = Field("http://localhost:11434/v1", description="Ollama's OpenAI-compatible API.")

# --- YAML-based Configuration Models ---

class ProviderPreset(BaseModel):
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key_env: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = 60.0

class PresetsConfig(BaseModel):
    providers: Dict[str, ProviderPreset] = Field(default_factory=dict)

# --- Main Config Object ---

class Config:
    """
    A unified configuration object.
    """
    def __init__(self, config_path: Optional[str] = None):
        try:
            self.app = QuerySettings()
        except ValidationError as e:
            raise ConfigError(f"Configuration validation error: {e}") from e

        path = config_path or self.app.CONFIG_PATH
        self.presets: PresetsConfig = self._load_yaml(Path(path)) if path else PresetsConfig()

    def _load_yaml(self, config_path: Path) -> PresetsConfig:
        """Loads the presets YAML file and validates it."""
        if not config_path.exists():
            raise ConfigError(f"Configuration file '{config_path.name}' not found in {config_path.parent}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        try:
            return PresetsConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid provider presets in {config_path}: {e}") from e

    def preset(self, name: str) -> Optional[ProviderPreset]:
        return self.presets.providers.get(name.lower())

# --- Global Config Instance ---
_settings_instance = None

def get_settings() -> Config:
    """
    Returns a singleton instance of the Config object.
    Settings are loaded lazily so importing the package never reads the
    environment or YAML files.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Config()
        logger.debug("Loaded settings (default provider=%s)", _settings_instance.app.DEFAULT_PROVIDER)
    return _settings_instance

def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None
