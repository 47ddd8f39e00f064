"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, Field, field_validator, model_validator


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    # External tools
    downloader_path: str = "DepotDownloader"
    archiver_path: str = "7zz"
    output_dir: str = "~/DepotPacker"

    # Compression
    skip_compression: bool = False
    compression_password_enabled: bool = False
    compression_password: str = ""

    # Login
    default_qr_login: bool = False

    # Console log buffer
    log_line_cap: int = 10000
    log_trim_margin: int = 1000
    console_flush_interval_ms: int = 120

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("downloader_path", "archiver_path", "output_dir")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Tool paths and the output directory cannot be empty.")
        return v

    @field_validator("log_line_cap")
    @classmethod
    def validate_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Log line cap must be at least 1.")
        return v

    @field_validator("log_trim_margin")
    @classmethod
    def validate_margin(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Log trim margin cannot be negative.")
        return v

    @field_validator("console_flush_interval_ms")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 10 or v > 5000:
            raise ValueError("Console flush interval must be between 10 and 5000 ms.")
        return v

    @model_validator(mode="after")
    def validate_compression_password(self) -> "AppConfig":
        """A compression password can only be enabled together with a password."""
        if self.compression_password_enabled and not self.compression_password:
            raise ValueError(
                "Compression password cannot be enabled without setting a password."
            )
        return self

    @property
    def effective_compression_password(self) -> str | None:
        if self.compression_password_enabled and self.compression_password:
            return self.compression_password
        return None

    @property
    def flush_interval(self) -> float:
        return self.console_flush_interval_ms / 1000

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
