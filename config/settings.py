from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Dict
import pydantic


class Settings(BaseSettings):
    """
    Manages process-level settings and secrets.
    Reads from environment variables (and .env file).

    Run-level knobs (thresholds, skip flags, timeouts) are NOT here:
    they arrive as pipeline inputs, see config.pipeline.
    """

    # --- Core Application Configuration ---
    LOG_LEVEL: str = "INFO"

    # --- Output ---
    OUTPUT_DIR: str = "scan_results"

    # Optional JSON file overriding the per-tool severity mapping table
    SEVERITY_MAP_FILE: str | None = None

    # --- Scanner credentials (never logged, never reported) ---
    NVD_API_KEY: str | None = None  # For Dependency-Check

    # --- Scanner images ---
    ZAP_IMAGE: str = "ghcr.io/zaproxy/zaproxy:stable"

    # --- Notifications ---
    NOTIFICATION_WEBHOOK_URL: str | None = None
    REPORT_BASE_URL: str | None = None

    # --- JIRA Integration (for automated ticketing) ---
    JIRA_SERVER: str | None = None
    JIRA_USERNAME: str | None = None
    JIRA_API_TOKEN: str | None = None
    JIRA_PROJECT_KEY: str = "SEC"

    @pydantic.computed_field
    @property
    def JIRA_ENABLED(self) -> bool:
        """
        Ticketing only works when ALL Jira credentials are present.
        """
        return bool(self.JIRA_SERVER and self.JIRA_USERNAME and self.JIRA_API_TOKEN)

    def scanner_credentials(self) -> Dict[str, str]:
        """
        Credentials handed to task contexts. Only non-empty values.
        """
        candidates = {
            "NVD_API_KEY": self.NVD_API_KEY,
        }
        return {name: value for name, value in candidates.items() if value}

    # Pydantic-Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the Settings object.
    Using @lru_cache ensures the .env file is read only once.
    """
    return Settings()
