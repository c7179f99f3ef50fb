from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, Optional

# Application version
VERSION = "0.1.0"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8090
    LOG_LEVEL: str = "info"
    APP_DEBUG: bool = False
    ROOT_PATH: str = ""

    # Relay Configuration
    # Same-origin path the relay serves; the percent-encoded upstream URL follows it
    RELAY_PATH_PREFIX: str = "/proxy/"
    # Origin the headless engine uses to dereference relay paths
    RELAY_BASE_URL: str = "http://localhost:8085"

    # Playback strategy
    # Raw transport-stream segments are played directly, never through the engine
    RAW_SEGMENT_EXTENSION: str = ".ts"
    # What the headless surface answers for the adaptive manifest media type
    # (probably, maybe or no)
    NATIVE_HLS_SUPPORT: str = "no"
    # When False the headless surface rejects play requests like a browser
    # enforcing an autoplay policy
    AUTOPLAY_ALLOWED: bool = True

    # Presets - either may be left empty, the operator then pastes a URL
    PRESET_WILLOW_URL: str = ""
    PRESET_SKY_URL: str = ""

    # Recovery
    # Consecutive fatal network/media recoveries allowed before the session is
    # terminated. Unset keeps retrying for as long as the engine reports errors.
    MAX_FATAL_RECOVERIES: Optional[int] = None

    # Headless engine HTTP behaviour
    ENGINE_CONNECT_TIMEOUT: float = 10.0
    ENGINE_READ_TIMEOUT: float = 20.0
    # Consecutive live playlist refresh failures tolerated as non-fatal
    LEVEL_LOAD_MAX_RETRY: int = 4
    # Manifest load retries before the failure is reported as fatal; each
    # retry waits one second longer than the previous one
    MANIFEST_LOAD_MAX_RETRY: int = 3

    # API Authentication
    API_TOKEN: Optional[str] = None

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables from container
    )

    @property
    def presets(self) -> Dict[str, str]:
        """Preset name -> configured URL (possibly empty)"""
        return {
            "willow": self.PRESET_WILLOW_URL,
            "sky": self.PRESET_SKY_URL,
        }


# Global settings instance
settings = Settings()
