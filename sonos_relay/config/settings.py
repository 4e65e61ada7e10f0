"""
Environment-based configuration using pydantic-settings.
Every tunable lives here; modules read the module-level `settings` singleton.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # ── Core ────────────────────────────────────────────────────────────────
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    # ── Real-time channel ───────────────────────────────────────────────────
    CHANNEL_URL: Optional[str] = None
    CHANNEL_MATCH: str = "/websocket"     # substring marking the monitored channel

    # ── Origins ─────────────────────────────────────────────────────────────
    PAGE_ORIGIN: str = "https://play.sonos.com"
    EXTENSION_ORIGIN: str = "extension://sonos-relay"
    SURFACE_URL_PATTERN: str = "https://play.sonos.com/*"

    # ── Storage ─────────────────────────────────────────────────────────────
    STATE_DIR: Path = Path("/tmp/sonos_relay")

    # ── Volume ──────────────────────────────────────────────────────────────
    VOLUME_DEBOUNCE_SECONDS: float = 0.5
    VOLUME_WHEEL_STEP: int = 2

    # ── Notifications ────────────────────────────────────────────────────────
    NOTIFICATIONS_ENABLED_DEFAULT: bool = True
    DEFAULT_ICON_URL: str = "icons/icon128.png"
    ARTWORK_TIMEOUT_SECONDS: float = 5.0
    ARTWORK_MAX_BYTES: int = 2 * 1024 * 1024

    # ── HTTP client ──────────────────────────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: int = 30

    @field_validator("STATE_DIR", mode="before")
    @classmethod
    def ensure_state_dir(cls, v: Path) -> Path:
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def state_file(self) -> Path:
        return self.STATE_DIR / "state.json"

    @property
    def preferences_file(self) -> Path:
        return self.STATE_DIR / "preferences.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
