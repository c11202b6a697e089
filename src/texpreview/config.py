"""Configuration management.

Settings are loaded from environment variables (and an optional .env file)
using pydantic-settings. Diagram layout constants live in a nested
calibration model so they can be tuned without code changes
(e.g. ``DIAGRAM__FLAT_ASPECT_THRESHOLD=4``).
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiagramCalibration(BaseModel):
    """Tunable constants for the diagram layout heuristic."""

    # Classification
    flat_aspect_threshold: float = 3.0
    text_heavy_label_chars: float = 30.0
    compact_node_count: int = 8
    compact_distance_below: float = 2.0
    large_distance_from: float = 2.5
    wide_span_threshold: float = 14.0
    # WIDE is only produced when this is disabled; by default any diagram
    # with explicit coordinates that is not flat is classified LARGE.
    wide_as_large: bool = True

    # Compact
    compact_scale_dense: float = 0.75
    compact_scale: float = 0.85
    compact_node_distance_cm: float = 1.5

    # Large
    large_target_width_cm: float = 25.0
    large_max_unit: float = 2.5
    large_clamp_wide: float = 1.8
    large_clamp_narrow: float = 1.3
    large_wide_span: float = 7.0
    large_min_unit: float = 0.3
    large_target_height_cm: float = 8.0
    large_y_min: float = 1.0
    large_y_max: float = 1.8
    large_relative_y: float = 0.5
    large_distance_text_cm: float = 8.4
    large_distance_cm: float = 5.0
    large_min_distance_cm: float = 0.5

    # Wide
    wide_scale_factor: float = 0.9
    wide_min_scale: float = 0.5

    # Flat
    flat_x_multiplier: float = 1.5
    flat_y_min: float = 1.5
    flat_y_max: float = 3.0
    flat_small_font_nodes: int = 5

    # Medium
    medium_scale_dense: float = 0.8
    medium_scale: float = 0.9
    medium_dense_nodes: int = 6
    medium_node_distance_cm: float = 2.5

    # Relative text-heavy diagrams
    text_heavy_x_cm: float = 2.2
    text_heavy_y_cm: float = 1.5

    # Brace decoration polyfill
    brace_magnitude: float = 0.15
    brace_tip: float = 0.35
    brace_label_offset: float = 0.6

    # Sandbox
    min_frame_height_px: int = 100
    frame_height_padding_px: int = 25


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)
    rate_limit_requests: int = Field(default=60, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    max_document_chars: int = Field(default=500_000, ge=1)

    # Sanitizer limits
    gatekeeper_tolerance: int = Field(default=2, ge=0)
    diagram_iteration_cap: int = Field(default=100, ge=1)
    list_iteration_cap: int = Field(default=500, ge=1)
    environment_iteration_cap: int = Field(default=500, ge=1)

    # Math auto-scale
    math_max_width_em: float = Field(default=50.0, gt=0)
    math_char_width_em: float = Field(default=0.45, gt=0)

    # Post-layout shrink pass
    shrink_floor: float = Field(default=0.55, gt=0, le=1)
    shrink_safety_margin: float = Field(default=0.98, gt=0, le=1)
    container_width_px: int = Field(default=720, ge=1)
    char_width_px: float = Field(default=7.5, gt=0)

    diagram: DiagramCalibration = Field(default_factory=DiagramCalibration)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lowercase log level names."""
        return v.upper() if isinstance(v, str) else v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
