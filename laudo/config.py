from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'Laudo Pericial Renderer'

    data_dir: Path = Field(default=Path('./data'))
    log_level: str = 'INFO'

    # Object storage used to refresh expired signed URLs
    storage_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('STORAGE_URL', 'SUPABASE_URL'),
    )
    storage_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices('STORAGE_KEY', 'SUPABASE_ANON_KEY', 'SUPABASE_KEY'),
    )
    storage_signed_url_ttl_seconds: int = 3600
    storage_timeout_seconds: int = 20
    storage_photo_bucket: str = 'process-documents'

    # Image fetching
    image_fetch_timeout_seconds: int = 30
    max_image_bytes: int = 20 * 1024 * 1024

    # DOCX export
    docx_font_name: str = 'Arial'

    # PDF export
    pdf_font_name: str = 'Helvetica'
    pdf_font_bold_name: str = 'Helvetica-Bold'
    pdf_font_path: Path | None = None
    pdf_font_bold_path: Path | None = None

    # Boilerplate
    conclusion_city: str = 'Diadema'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
