from __future__ import annotations

import asyncio
import logging
import traceback
from datetime import date, datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from certreport.adapters.renderer import ExternalRenderer, RenderOptions, render_options_from_settings
from certreport.config import Settings, get_settings
from certreport.exceptions import InputValidationError, RenderTimeoutError, ReportError
from certreport.report.composer import DocumentComposer, PdfInsert
from certreport.report.filename import build_report_filename
from certreport.report.layout import APPENDIX_RULES, attachment_sources
from certreport.report.pdf_merge import PdfMerger, PdfSource, count_pages
from certreport.report.template_store import TemplateStore, get_template_store
from certreport.types import ReportFailure, ReportJob, ReportResult

logger = logging.getLogger(__name__)


def validate_job(job_or_payload: ReportJob | Mapping[str, Any]) -> ReportJob:
    if isinstance(job_or_payload, ReportJob):
        job = job_or_payload
    else:
        try:
            job = ReportJob.model_validate(dict(job_or_payload))
        except ValidationError as exc:
            raise InputValidationError('report job payload is invalid', detail=str(exc)) from exc

    missing: list[str] = []
    if not (job.project_id or '').strip():
        missing.append('project_id')
    if not (job.site_label or '').strip():
        missing.append('vehicle_description' if job.is_vehicle_clearance else 'site_name')
    if missing:
        raise InputValidationError(
            f'missing required fields: {", ".join(missing)}',
            detail=f'job={job.id or "-"}',
        )
    return job


def count_attachment_pages(job: ReportJob) -> dict[str, int]:
    """Page count of every PDF attachment; unreadable ones count as zero pages."""
    counts: dict[str, int] = {}
    for rule in APPENDIX_RULES:
        for key, attachment in attachment_sources(job, rule.key):
            if not attachment.is_pdf:
                continue
            try:
                pages = count_pages(attachment.raw_bytes())
            except ValueError:
                pages = None
            if pages is None:
                logger.warning('attachment %s could not be parsed; it will be skipped', key)
            counts[key] = pages or 0
    return counts


def oversized_attachments(job: ReportJob, limit: int) -> list[str]:
    oversized: list[str] = []
    for rule in APPENDIX_RULES:
        for key, attachment in attachment_sources(job, rule.key):
            try:
                size = len(attachment.raw_bytes())
            except ValueError:
                continue
            if size > limit:
                oversized.append(key)
    return oversized


def _failure(exc: BaseException) -> ReportFailure:
    if isinstance(exc, ReportError):
        return ReportFailure(kind=type(exc).__name__, message=exc.message, detail=exc.detail)
    detail = ''.join(traceback.format_exception_only(type(exc), exc)).strip()
    return ReportFailure(kind=type(exc).__name__, message='Report generation failed.', detail=detail)


async def _render_segment(renderer: ExternalRenderer, html: str, options: RenderOptions, timeout: float) -> bytes:
    try:
        return await asyncio.wait_for(renderer.render(html, options), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise RenderTimeoutError(f'PDF renderer timed out after {timeout:g}s') from exc


async def generate_report(
    job_or_payload: ReportJob | Mapping[str, Any],
    *,
    renderer: ExternalRenderer,
    store: TemplateStore | None = None,
    merger: PdfMerger | None = None,
    settings: Settings | None = None,
    render_date: date | None = None,
) -> ReportResult:
    settings = settings or get_settings()
    if render_date is None:
        render_date = datetime.now(ZoneInfo(settings.report_timezone)).date()

    try:
        job = validate_job(job_or_payload)
        attachment_pages = count_attachment_pages(job)

        composer = DocumentComposer(store or get_template_store(settings.template_dir), settings=settings)
        document = composer.compose(job, render_date=render_date, attachment_pages=attachment_pages)

        options = render_options_from_settings(settings)
        sources: list[PdfSource] = []
        for part in document.segments():
            if isinstance(part, PdfInsert):
                sources.append(PdfSource(part.label, part.data))
                continue
            logger.info('rendering segment %d (%d pages)', part.index, part.page_count)
            pdf = await _render_segment(renderer, part.html, options, settings.renderer_timeout_seconds)
            sources.append(PdfSource(f'segment {part.index}', pdf, required=True))

        merger = merger or PdfMerger.from_settings(settings)
        merged = await merger.merge_sources_async(sources)
    except Exception as exc:
        failure = _failure(exc)
        logger.error('report generation failed: %s: %s', failure.kind, failure.message)
        return ReportResult(ok=False, failure=failure)

    warnings = [f'{label}: attachment could not be merged and was skipped' for label in merged.skipped]
    filename = build_report_filename(job, fallback_date=render_date, timezone=settings.report_timezone)
    logger.info('generated %s (%d pages, %d warnings)', filename, merged.page_count, len(warnings))
    return ReportResult(
        ok=True,
        pdf=merged.pdf,
        filename=filename,
        page_count=merged.page_count,
        warnings=warnings,
    )


def run_report(
    job_or_payload: ReportJob | Mapping[str, Any],
    *,
    renderer: ExternalRenderer,
    store: TemplateStore | None = None,
    merger: PdfMerger | None = None,
    settings: Settings | None = None,
    render_date: date | None = None,
) -> ReportResult:
    return asyncio.run(
        generate_report(
            job_or_payload,
            renderer=renderer,
            store=store,
            merger=merger,
            settings=settings,
            render_date=render_date,
        )
    )
