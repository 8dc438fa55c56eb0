"""
Centralized configuration management for the Begleitschein publisher.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.
"""

from functools import lru_cache
from typing import Annotated

from pydantic import (
    AnyHttpUrl,
    Field,
    SecretStr,
    StringConstraints,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from publisher.app.rendering.host import PageSize


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

EnvRequired = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1),
]

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]

# Supabase bucket, table and column names end up in URL paths.
ResourceName = Annotated[
    str,
    Field(
        pattern=r"^[a-zA-Z0-9_-]{1,63}$",
        description="Strict identifier validation to prevent path injection",
    ),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if the Supabase project URL or service key
    is missing or malformed.
    """

    # ---------------------------------------------------------------------
    # Supabase project
    # ---------------------------------------------------------------------

    supabase_url: Annotated[
        AnyHttpUrl,
        Field(description="Supabase project base URL"),
    ]
    supabase_service_key: SensitiveEnv

    # ---------------------------------------------------------------------
    # Storage and record mapping
    # ---------------------------------------------------------------------

    storage_bucket: ResourceName = "lieferschein"
    record_table: ResourceName = "ankauf_requests"
    record_key_column: ResourceName = "ankaufs_nummer"
    record_url_column: ResourceName = "pdf_url"

    # ---------------------------------------------------------------------
    # Page geometry and rasterization
    # ---------------------------------------------------------------------

    page_width_px: Annotated[
        int,
        Field(
            default=794,
            ge=100,
            description="Page width in CSS pixels (A4 at 96 dpi)",
        ),
    ]
    page_height_px: Annotated[
        int,
        Field(
            default=1123,
            ge=100,
            description="Page height in CSS pixels (A4 at 96 dpi)",
        ),
    ]
    render_scale: Annotated[
        float,
        Field(
            default=2.0,
            ge=0.5,
            le=4.0,
            description=(
                "Device pixels per CSS pixel during capture. "
                "Higher is sharper but larger and slower."
            ),
        ),
    ]
    min_pdf_bytes: Annotated[
        int,
        Field(
            default=2000,
            ge=0,
            description="Below this size a rendered PDF is logged as suspicious",
        ),
    ]
    strip_css_imports: Annotated[
        bool,
        Field(
            default=True,
            description="Remove @import rules before staging",
        ),
    ]

    # ---------------------------------------------------------------------
    # Document presentation
    # ---------------------------------------------------------------------

    order_number_prefix: EnvRequired = "BR"
    display_timezone: EnvRequired = "Europe/Berlin"

    # ---------------------------------------------------------------------
    # Network
    # ---------------------------------------------------------------------

    http_timeout_seconds: Annotated[
        float,
        Field(default=30.0, gt=0),
    ]

    # ---------------------------------------------------------------------
    # In-process coordinator registry
    # ---------------------------------------------------------------------

    registry_max_entries: Annotated[
        int,
        Field(
            default=1024,
            ge=1,
            description="Finished coordinators beyond this count are evicted, oldest first",
        ),
    ]

    model_config = SettingsConfigDict(
        env_prefix="BEGLEITSCHEIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("display_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown display timezone '{v}'") from exc
        return v

    @property
    def page_size(self) -> PageSize:
        return PageSize(width=self.page_width_px, height=self.page_height_px)

    @property
    def supabase_base_url(self) -> str:
        return str(self.supabase_url).rstrip("/")


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.
    """
    return Settings()  # singleton within process
