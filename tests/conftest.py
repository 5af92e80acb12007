"""Shared fixtures for certreport tests."""

from __future__ import annotations

import base64
from typing import Any, Callable

import pytest
from reportlab.lib.pagesizes import A4, landscape

from certreport.config import Settings
from certreport.report.template_store import TemplateStore
from tests.fakes.fake_renderer import FakeRenderer, build_pdf

PNG_BASE64 = 'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII='
PNG_DATA_URI = f'data:image/png;base64,{PNG_BASE64}'


@pytest.fixture
def settings() -> Settings:
    """Test settings; never reads a local .env file."""
    return Settings(
        _env_file=None,
        renderer_api_key='test-key',
        renderer_base_url='https://renderer.test',
        renderer_timeout_seconds=5.0,
        report_timezone='Australia/Sydney',
        signoff_item_threshold=5,
        photos_per_page=2,
    )


@pytest.fixture
def store() -> TemplateStore:
    return TemplateStore()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def pdf_bytes() -> Callable[..., bytes]:
    """Factory for fixture PDFs: ``pdf_bytes('portrait', 'landscape')``."""

    sizes = {'portrait': A4, 'landscape': landscape(A4)}

    def factory(*orientations: str) -> bytes:
        return build_pdf([sizes[name] for name in orientations or ('portrait',)], label='attachment')

    return factory


def pdf_data_uri(data: bytes) -> str:
    return 'data:application/pdf;base64,' + base64.b64encode(data).decode('ascii')


def make_item(index: int, *, photos: int = 0, excluded: int = 0, level: str | None = None) -> dict[str, Any]:
    photographs = [{'data': PNG_DATA_URI} for _ in range(photos)]
    photographs.extend({'data': PNG_DATA_URI, 'includeInReport': False} for _ in range(excluded))
    item: dict[str, Any] = {
        'locationDescription': f'Room {index + 1}',
        'materialDescription': 'Fibre cement sheeting',
        'asbestosType': 'Non-friable',
        'photographs': photographs,
    }
    if level is not None:
        item['levelFloor'] = level
    return item


@pytest.fixture
def job_payload() -> Callable[..., dict[str, Any]]:
    """Factory for clearance job payloads in the camelCase wire format."""

    def factory(*, items: int = 2, photos: list[int] | None = None, **overrides: Any) -> dict[str, Any]:
        photo_counts = photos if photos is not None else [0] * items
        payload: dict[str, Any] = {
            'id': 'job-1',
            'kind': 'clearance',
            'clearanceType': 'Non-friable',
            'jurisdiction': 'ACT',
            'projectId': 'LDJ01234',
            'siteName': '12 Example Street, Mitchell ACT',
            'clientName': 'Example Client Pty Ltd',
            'clearanceDate': '2025-02-26',
            'inspectionTime': '09:05',
            'laaName': 'Jordan Smith',
            'laaLicence': 'AA00123',
            'asbestosRemovalist': 'Safe Removals Pty Ltd',
            'reportApprovedBy': 'Alex Brown',
            'items': [make_item(index, photos=photo_counts[index]) for index in range(len(photo_counts))],
        }
        payload.update(overrides)
        return payload

    return factory
