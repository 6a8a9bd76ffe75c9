"""
Pianoroll Engine Configuration

Environment-based configuration for the derivation engine and CLI.
"""
import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from the installed distribution metadata."""
    try:
        from importlib.metadata import version
        return version("pianoroll-engine")
    except Exception:
        pass
    return "0.0.0-unknown"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    app_name: str = "Pianoroll Engine"
    app_version: str = _app_version_from_package()
    debug: bool = False
    log_level: str = "INFO"

    # Derivation
    tail_padding_ms: float = 200.0  # grace appended to notes still open at end of a pass
    min_duration_ms: float = 1.0
    sustain_controller: int = 64
    sustain_threshold: int = 64  # pedal is down when value >= threshold

    # Editing defaults
    default_velocity: int = 100  # ~78% of the 0-127 range
    default_track_id: str = "track-1"
    default_tempo_bpm: int = 120
    beats_per_bar: int = 4

    @model_validator(mode="after")
    def _warn_odd_derivation_values(self) -> "Settings":
        """Warn when derivation settings fall outside MIDI-meaningful ranges."""
        if not 0 <= self.sustain_threshold <= 127:
            logging.getLogger(__name__).warning(
                "⚠️ PIANOROLL_SUSTAIN_THRESHOLD=%s is outside 0-127; the pedal "
                "will never (or always) read as down.",
                self.sustain_threshold,
            )
        if self.tail_padding_ms < 0:
            logging.getLogger(__name__).warning(
                "⚠️ PIANOROLL_TAIL_PADDING_MS=%s is negative; unterminated notes "
                "will collapse to the minimum duration.",
                self.tail_padding_ms,
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="PIANOROLL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
