from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import Iterable

from pypdf import PdfReader, PdfWriter

from certreport.config import Settings, get_settings
from certreport.exceptions import AttachmentMergeError, RenderError

logger = logging.getLogger(__name__)

MERGE_BACKENDS = ('pypdf', 'pymupdf')


@dataclass(frozen=True)
class PdfSource:
    label: str
    data: bytes
    # Rendered body segments are required; attachments are not.
    required: bool = False


@dataclass
class MergeResult:
    pdf: bytes
    page_count: int
    skipped: list[str] = field(default_factory=list)


def _open_reader(data: bytes) -> PdfReader:
    reader = PdfReader(io.BytesIO(data))
    if reader.is_encrypted:
        reader.decrypt('')
    return reader


def count_pages(buffer: bytes) -> int | None:
    """Number of pages in a PDF buffer, or ``None`` when it cannot be parsed."""
    if not buffer:
        return None
    try:
        pages = len(_open_reader(buffer).pages)
    except Exception as exc:
        logger.debug('could not count pages: %s', exc)
        return None
    return pages or None


class PdfMerger:
    """Concatenates PDFs by copying page objects; nothing is re-rendered.

    Each source is first staged on its own so a broken attachment never
    leaves partial pages in the output.
    """

    def __init__(self, backend: str = 'pypdf'):
        if backend not in MERGE_BACKENDS:
            raise ValueError(f'unknown PDF merge backend: {backend}')
        self.backend = backend

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> 'PdfMerger':
        settings = settings or get_settings()
        return cls(settings.pdf_merge_backend)

    def merge(self, buffers: Iterable[bytes]) -> bytes:
        """Merge raw buffers; the first is the rendered body, later unreadable ones are skipped."""
        sources = [PdfSource(f'buffer {index}', data, required=index == 0) for index, data in enumerate(buffers)]
        return self.merge_sources(sources).pdf

    def merge_sources(self, sources: Iterable[PdfSource]) -> MergeResult:
        staged: list[bytes] = []
        skipped: list[str] = []
        for source in sources:
            try:
                staged.append(self._stage(source))
            except AttachmentMergeError as exc:
                if source.required:
                    raise RenderError(f'rendered document {source.label} is not a readable PDF', detail=exc.detail) from exc
                logger.warning('skipping attachment %s: %s', source.label, exc.detail or exc.message)
                skipped.append(source.label)

        if not staged:
            raise RenderError('no PDF content to merge')

        if self.backend == 'pymupdf':
            pdf, page_count = self._combine_pymupdf(staged)
        else:
            pdf, page_count = self._combine_pypdf(staged)
        logger.info('merged %d sources into %d pages (%d skipped)', len(staged), page_count, len(skipped))
        return MergeResult(pdf=pdf, page_count=page_count, skipped=skipped)

    async def merge_sources_async(self, sources: Iterable[PdfSource]) -> MergeResult:
        return await asyncio.to_thread(self.merge_sources, list(sources))

    def _stage(self, source: PdfSource) -> bytes:
        if not source.data:
            raise AttachmentMergeError(f'{source.label} is empty', detail='empty buffer')
        try:
            if self.backend == 'pymupdf':
                return self._stage_pymupdf(source.data)
            return self._stage_pypdf(source.data)
        except AttachmentMergeError:
            raise
        except Exception as exc:
            raise AttachmentMergeError(
                f'{source.label} could not be merged',
                detail=f'{type(exc).__name__}: {exc}',
            ) from exc

    def _stage_pypdf(self, data: bytes) -> bytes:
        reader = _open_reader(data)
        if not reader.pages:
            raise AttachmentMergeError('PDF has no pages', detail='no pages')
        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        output = io.BytesIO()
        writer.write(output)
        return output.getvalue()

    def _combine_pypdf(self, staged: list[bytes]) -> tuple[bytes, int]:
        writer = PdfWriter()
        for data in staged:
            for page in PdfReader(io.BytesIO(data)).pages:
                writer.add_page(page)
        output = io.BytesIO()
        writer.write(output)
        return output.getvalue(), len(writer.pages)

    def _stage_pymupdf(self, data: bytes) -> bytes:
        import pymupdf

        source_doc = pymupdf.open(stream=data, filetype='pdf')
        staged_doc = pymupdf.open()
        try:
            if source_doc.needs_pass and not source_doc.authenticate(''):
                raise AttachmentMergeError('PDF is password protected', detail='encrypted')
            if source_doc.page_count == 0:
                raise AttachmentMergeError('PDF has no pages', detail='no pages')
            staged_doc.insert_pdf(source_doc)
            return staged_doc.tobytes()
        finally:
            staged_doc.close()
            source_doc.close()

    def _combine_pymupdf(self, staged: list[bytes]) -> tuple[bytes, int]:
        import pymupdf

        output_doc = pymupdf.open()
        try:
            for data in staged:
                source_doc = pymupdf.open(stream=data, filetype='pdf')
                try:
                    output_doc.insert_pdf(source_doc)
                finally:
                    source_doc.close()
            return output_doc.tobytes(), output_doc.page_count
        finally:
            output_doc.close()
