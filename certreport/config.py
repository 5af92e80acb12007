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
        populate_by_name=True,
    )

    app_name: str = 'certreport'
    log_level: str = 'INFO'

    output_dir: Path = Field(default=Path('./output'))
    # Overrides the HTML fragments bundled with the package.
    template_dir: Path | None = None

    # HTML -> PDF service (DocRaptor-compatible API)
    renderer_base_url: str = 'https://docraptor.com'
    renderer_endpoint: str = '/docs'
    renderer_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices('RENDERER_API_KEY', 'DOCRAPTOR_API_KEY'),
    )
    renderer_timeout_seconds: float = 30.0
    renderer_test_mode: bool = False
    renderer_media: str = 'print'

    page_size: str = 'A4'
    page_margin: str = '0'

    # Layout
    report_timezone: str = 'Australia/Sydney'
    signoff_item_threshold: int = 5
    photos_per_page: int = 2

    # PDF merge: 'pypdf' or 'pymupdf'
    pdf_merge_backend: str = 'pypdf'
    max_attachment_bytes: int = 50 * 1024 * 1024

    # Printed in page headers and on the cover
    company_name: str = 'Lancaster & Dickenson Consulting Pty Ltd'
    company_address: str = '4/6 Dacre Street, Mitchell ACT 2911'
    company_email: str = 'enquiries@landd.com.au'
    company_phone: str = '(02) 6241 2779'
    company_website: str = 'www.landd.com.au'
    company_abn: str = '74 169 785 915'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
