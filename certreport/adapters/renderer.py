from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from certreport.config import Settings, get_settings
from certreport.exceptions import RenderError, RenderTimeoutError

logger = logging.getLogger(__name__)

_ERROR_BODY_EXCERPT = 500


@dataclass(frozen=True)
class RenderOptions:
    page_size: str = 'A4'
    margin: str = '0'
    media: str = 'print'
    print_background: bool = True


@runtime_checkable
class ExternalRenderer(Protocol):
    async def render(self, html: str, options: RenderOptions) -> bytes:
        ...


@dataclass
class RendererConfig:
    base_url: str
    endpoint: str
    api_key: str | None
    timeout_seconds: float
    test_mode: bool

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> 'RendererConfig':
        settings = settings or get_settings()
        return cls(
            base_url=settings.renderer_base_url,
            endpoint=settings.renderer_endpoint,
            api_key=settings.renderer_api_key,
            timeout_seconds=settings.renderer_timeout_seconds,
            test_mode=settings.renderer_test_mode,
        )


def render_options_from_settings(settings: Settings | None = None) -> RenderOptions:
    settings = settings or get_settings()
    return RenderOptions(
        page_size=settings.page_size,
        margin=settings.page_margin,
        media=settings.renderer_media,
    )


class HttpRenderer:
    """HTML to PDF through a DocRaptor-compatible HTTP API.

    One POST per document, authenticated with the API key as the basic-auth
    user name. Failures are not retried.
    """

    def __init__(self, cfg: RendererConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.cfg.api_key and self.cfg.base_url)

    @property
    def url(self) -> str:
        return self.cfg.base_url.rstrip('/') + '/' + self.cfg.endpoint.lstrip('/')

    def build_payload(self, html: str, options: RenderOptions) -> dict[str, Any]:
        return {
            'type': 'pdf',
            'document_type': 'pdf',
            'document_content': html,
            'test': self.cfg.test_mode,
            'javascript': False,
            'page_size': options.page_size,
            'page_margin': options.margin,
            'prince_options': {
                'media': options.media,
                'no_author_style': False,
            },
            'print_background': options.print_background,
        }

    async def render(self, html: str, options: RenderOptions) -> bytes:
        if not self.configured:
            raise RenderError('PDF renderer is not configured: missing API key or base URL')

        payload = self.build_payload(html, options)
        timeout = max(1.0, float(self.cfg.timeout_seconds))
        logger.info('rendering %d characters of HTML via %s', len(html), self.url)
        try:
            response = await asyncio.wait_for(self._post(payload, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RenderTimeoutError(
                f'PDF renderer timed out after {timeout:g}s',
                detail=type(exc).__name__,
            ) from exc
        except httpx.HTTPError as exc:
            raise RenderError(f'PDF renderer request failed: {type(exc).__name__}: {exc}') from exc

        if response.status_code < 200 or response.status_code >= 300:
            excerpt = response.text[:_ERROR_BODY_EXCERPT]
            raise RenderError(
                f'PDF renderer returned HTTP {response.status_code}',
                detail=excerpt,
            )
        content = response.content
        if not content.startswith(b'%PDF'):
            raise RenderError('PDF renderer returned a non-PDF body', detail=content[:_ERROR_BODY_EXCERPT].decode('utf-8', 'replace'))
        logger.info('renderer returned %d bytes', len(content))
        return content

    async def _post(self, payload: dict[str, Any], timeout: float) -> httpx.Response:
        assert self.cfg.api_key is not None
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.post(
                self.url,
                json=payload,
                auth=(self.cfg.api_key, ''),
                headers={'Accept': 'application/pdf'},
            )


def build_renderer(settings: Settings | None = None) -> HttpRenderer:
    return HttpRenderer(RendererConfig.from_settings(settings))
