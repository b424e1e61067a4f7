"""Configuration management for the Vikunja MCP server."""

from datetime import datetime
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Vikunja API
    vikunja_url: str | None = Field(
        default=None, description="Vikunja instance URL (e.g., https://vikunja.example.com)"
    )
    vikunja_api_token: str | None = Field(default=None, description="Vikunja API token")
    request_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for a single HTTP request in seconds"
    )
    listing_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a complete paginated task listing in seconds",
    )
    page_size: int = Field(default=50, ge=1, le=1000, description="Tasks per page when listing")
    max_pages: int = Field(default=100, ge=1, description="Maximum pages fetched per listing")

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=3, ge=1, description="Consecutive failures before the circuit opens"
    )
    circuit_reset_timeout: float = Field(
        default=30.0, gt=0, description="Seconds the circuit stays open before a trial call"
    )

    # Filter parser limits
    filter_max_length: int = Field(default=4096, ge=1, description="Maximum filter length")
    filter_max_depth: int = Field(default=6, ge=1, description="Maximum group nesting depth")
    filter_max_conditions: int = Field(default=50, ge=1, description="Maximum conditions per filter")
    contains_case_sensitive: bool = Field(
        default=False, description="Whether 'contains' comparisons are case-sensitive"
    )
    server_operator_overrides: dict[str, list[str]] = Field(
        default_factory=dict,
        description="JSON mapping of field name to the operators the remote API supports, "
        'e.g. {"labels": ["in"], "description": ["contains"]}',
    )
    server_max_depth: int = Field(
        default=2, ge=1, description="Deepest group nesting sent to the remote API"
    )

    # Memory risk gate
    memory_low_water_mb: float = Field(default=25.0, gt=0, description="Medium tier threshold")
    memory_high_water_mb: float = Field(default=100.0, gt=0, description="High tier threshold")
    memory_margin: float = Field(default=2.5, ge=1.0, description="Safety margin multiplier")
    memory_sample_size: int = Field(default=20, ge=1, description="Items sampled per estimate")

    # Saved filter sessions
    session_idle_timeout: float = Field(
        default=1800.0, gt=0, description="Seconds of inactivity before a session is evicted"
    )
    session_sweep_interval: float = Field(
        default=60.0, gt=0, description="Seconds between idle session sweeps"
    )
    max_filters_per_session: int = Field(default=100, ge=1, description="Saved filters per session")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Path | None = Field(default=None, description="Directory for log files (optional)")

    @field_validator("vikunja_url")
    @classmethod
    def validate_vikunja_url(cls, v: str | None) -> str | None:
        """Validate that vikunja_url is an HTTP(S) URL."""
        if v is None:
            return v
        if not v.startswith(("https://", "http://")):
            raise ValueError("Vikunja URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_memory_marks(self) -> "Settings":
        if self.memory_high_water_mb <= self.memory_low_water_mb:
            raise ValueError("memory_high_water_mb must be greater than memory_low_water_mb")
        return self

    @model_validator(mode="after")
    def validate_listing_timeout(self) -> "Settings":
        if self.listing_timeout < self.request_timeout:
            raise ValueError("listing_timeout must not be shorter than request_timeout")
        return self

    def get_log_file(self, component_name: str = "vikunja_mcp") -> Path | None:
        """Get a log file path for a specific component.

        Creates log files with the format: {component_name}_{date}.log
        e.g., vikunja_mcp_2024-01-15.log

        Returns:
            Path to the log file, or None when file logging is disabled
        """
        if self.log_dir is None:
            return None
        date_str = datetime.now().strftime("%Y-%m-%d")
        # Sanitize component name for filesystem
        safe_name = "".join(c if c.isalnum() or c in "_-" else "_" for c in component_name)
        return self.log_dir / f"{safe_name}_{date_str}.log"


# Global settings instance
settings = Settings()
