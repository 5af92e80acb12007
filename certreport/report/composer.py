from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union
from zoneinfo import ZoneInfo

from certreport.config import Settings, get_settings
from certreport.report.filename import build_report_filename
from certreport.report.layout import (
    EMPTY_REGISTER_TEXT,
    Appendix,
    AttachmentSlot,
    LayoutPlan,
    LayoutPlanner,
    PhotoSlot,
)
from certreport.report.placeholders import (
    PlaceholderEngine,
    format_report_date,
    format_report_time,
    format_rich_text,
    format_short_date,
)
from certreport.report.template_store import TemplateStore, get_template_store
from certreport.types import AirMonitoringReport, Arrow, ReportJob, ReportKind, SitePlan

logger = logging.getLogger(__name__)

PAGE_BREAK = '<div class="page-break"></div>'

LICENCE_LABELS = {
    'ACT': 'ACT Licensed Asbestos Assessor',
    'NSW': 'NSW Licensed Asbestos Assessor',
}
DEFAULT_LICENCE_LABEL = 'Licensed Asbestos Assessor'

AIR_MONITORING_RESULT = 'Air monitoring was conducted and results were below the clearance indicator of 0.01 fibres per mL.'

_COLOR_PATTERN = re.compile(r'^(#[0-9a-fA-F]{3,8}|[a-zA-Z]{3,20})$')

_BACKGROUND_TEXT = {
    ReportKind.clearance: (
        'Following completion of asbestos removal works undertaken by a suitably licensed asbestos '
        'removal contractor, a clearance inspection must be completed by an independent Licensed '
        'Asbestos Assessor (LAA). The clearance inspection includes a visual inspection of the work '
        'area and the adjacent areas, including access and egress pathways, for visible asbestos dust '
        'and debris. A clearance certificate is issued on completion of a successful inspection and '
        'before the area is re-occupied.'
    ),
    ReportKind.assessment: (
        'An asbestos assessment identifies materials that contain or are presumed to contain asbestos, '
        'records their location, condition and associated risk, and informs the management or removal '
        'of those materials. Samples were analysed by a NATA accredited laboratory where collected.'
    ),
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return html.escape(text)


def _safe_color(value: str | None, default: str = '#000000') -> str:
    if value and _COLOR_PATTERN.match(value.strip()):
        return value.strip()
    return default


@dataclass(frozen=True)
class ComposedPage:
    slot: str
    html: str
    page_number: int


@dataclass(frozen=True)
class PdfInsert:
    """A PDF attachment merged as-is between rendered segments."""

    key: str
    label: str
    data: bytes
    page_count: int


@dataclass(frozen=True)
class RenderSegment:
    index: int
    html: str
    page_count: int


DocumentPart = Union[ComposedPage, PdfInsert]


@dataclass
class ComposedDocument:
    title: str
    shell: str
    parts: list[DocumentPart]
    plan: LayoutPlan
    engine: PlaceholderEngine = field(default_factory=PlaceholderEngine)

    @property
    def pages(self) -> list[ComposedPage]:
        return [part for part in self.parts if isinstance(part, ComposedPage)]

    @property
    def inserts(self) -> list[PdfInsert]:
        return [part for part in self.parts if isinstance(part, PdfInsert)]

    def _wrap(self, pages: Iterable[ComposedPage]) -> str:
        body = PAGE_BREAK.join(page.html for page in pages)
        return self.engine.substitute(self.shell, {'DOCUMENT_TITLE': self.title, 'PAGES': body})

    @property
    def html(self) -> str:
        """All HTML pages as a single document; PDF inserts are not represented."""
        return self._wrap(self.pages)

    def segments(self) -> list[RenderSegment | PdfInsert]:
        """Render segments split at each PDF insert, in document order."""
        ordered: list[RenderSegment | PdfInsert] = []
        pending: list[ComposedPage] = []

        def flush() -> None:
            if pending:
                ordered.append(RenderSegment(len(ordered), self._wrap(pending), len(pending)))
                pending.clear()

        for part in self.parts:
            if isinstance(part, PdfInsert):
                flush()
                ordered.append(part)
            else:
                pending.append(part)
        flush()
        return ordered


class DocumentComposer:
    """Assembles the ordered certificate pages from templates and a layout plan."""

    def __init__(
        self,
        store: TemplateStore | None = None,
        *,
        engine: PlaceholderEngine | None = None,
        settings: Settings | None = None,
        planner: LayoutPlanner | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or get_template_store(self.settings.template_dir)
        self.engine = engine or PlaceholderEngine()
        self.planner = planner or LayoutPlanner.from_settings(self.settings)

    def compose(
        self,
        job: ReportJob,
        *,
        render_date: date | None = None,
        attachment_pages: Mapping[str, int] | None = None,
        plan: LayoutPlan | None = None,
    ) -> ComposedDocument:
        if render_date is None:
            render_date = datetime.now(ZoneInfo(self.settings.report_timezone)).date()
        plan = plan or self.planner.plan(job, attachment_pages=attachment_pages)
        data = self._base_data(job, plan, render_date)
        numbers = plan.page_numbers
        parts: list[DocumentPart] = [
            self._page('cover', data, numbers.cover, footer=False),
            self._page(
                'version_control',
                {**data, 'REVISION_ROWS': self.revision_rows(job, render_date)},
                numbers.version_control,
            ),
            self._page(
                'inspection_details',
                self._inspection_data(job, plan, data),
                numbers.inspection_details,
            ),
        ]
        if plan.signoff_on_own_page and numbers.sign_off is not None:
            parts.append(self._page('sign_off_page', {**data, 'SIGN_OFF': data['SIGN_OFF_BLOCK']}, numbers.sign_off))
        parts.append(self._page('background', self._background_data(job, data), numbers.background))

        for appendix in plan.appendices:
            parts.append(
                self._page(
                    'appendix_cover',
                    {**data, 'APPENDIX_LETTER': appendix.letter, 'APPENDIX_TITLE': appendix.title},
                    appendix.cover_page,
                )
            )
            if appendix.key == 'photographs':
                for offset, photos in enumerate(plan.photo_pages):
                    parts.append(
                        self._page(
                            'photo_page',
                            {**data, 'PHOTOGRAPHS_CONTENT': self.photo_items(photos, data)},
                            appendix.cover_page + 1 + offset,
                        )
                    )
                continue
            for slot in appendix.attachments:
                if slot.is_pdf:
                    parts.append(self._pdf_insert(appendix, slot))
                else:
                    parts.append(self._attachment_page(appendix, slot, data))

        logger.info(
            'composed report %s: %d html pages, %d pdf inserts, %d appendices',
            job.id or job.project_id,
            sum(1 for part in parts if isinstance(part, ComposedPage)),
            sum(1 for part in parts if isinstance(part, PdfInsert)),
            len(plan.appendices),
        )
        return ComposedDocument(
            title=data['DOCUMENT_TITLE'],
            shell=self.store.get_template('document'),
            parts=parts,
            plan=plan,
            engine=self.engine,
        )

    def fill(self, slot: str, data: Mapping[str, Any]) -> str:
        return self.engine.substitute(self.store.get_template(slot), data)

    def _page(self, slot: str, data: Mapping[str, Any], page_number: int, *, footer: bool = True) -> ComposedPage:
        values = dict(data)
        if footer:
            values['PAGE_FOOTER'] = self.fill('page_footer', {**data, 'PAGE_NUMBER': str(page_number)})
        return ComposedPage(slot, self.fill(slot, values), page_number)

    def _base_data(self, job: ReportJob, plan: LayoutPlan, render_date: date) -> dict[str, Any]:
        settings = self.settings
        tz = settings.report_timezone
        site = _text(job.site_label)
        report_type = _text(job.clearance_type) or 'Non-friable'
        title = report_title(job)

        data: dict[str, Any] = {
            'COMPANY_NAME': html.escape(settings.company_name),
            'COMPANY_ADDRESS': html.escape(settings.company_address),
            'COMPANY_EMAIL': html.escape(settings.company_email),
            'COMPANY_PHONE': html.escape(settings.company_phone),
            'COMPANY_WEBSITE': html.escape(settings.company_website),
            'COMPANY_ABN': html.escape(settings.company_abn),
            'REPORT_TITLE': html.escape(title),
            'SECONDARY_HEADER': _text(job.secondary_header) or '',
            'SITE_NAME': site,
            'PROJECT_ID': _text(job.project_id),
            'CLIENT_NAME': _text(job.client_name),
            'LAA_NAME': _text(job.laa_name),
            'LAA_LICENCE': _text(job.laa_licence),
            'LICENCE_LABEL': LICENCE_LABELS.get((job.jurisdiction or '').upper(), DEFAULT_LICENCE_LABEL),
            'ASBESTOS_REMOVALIST': _text(job.asbestos_removalist),
            'REPORT_TYPE': report_type,
            'ASBESTOS_TYPE': report_type.lower(),
            'CLEARANCE_DATE': format_report_date(job.clearance_date, timezone=tz),
            'INSPECTION_DATE': format_report_date(job.clearance_date, timezone=tz),
            'INSPECTION_TIME': _text(format_report_time(job.inspection_time)),
            'DATE_LABEL': 'Assessment Date' if job.kind == ReportKind.assessment else 'Clearance Date',
            'ISSUE_DATE': format_short_date(job.report_issue_date, timezone=tz) or format_short_date(render_date),
            'APPROVED_BY': _text(job.report_approved_by),
            'FILENAME': html.escape(build_report_filename(job, fallback_date=render_date, timezone=tz, extension='')),
            'APPENDIX_REFERENCES': html.escape(plan.appendix_references),
            'AIR_MONITORING_REFERENCE': ' and air monitoring' if job.air_monitoring else '',
            'SIGNATURE_IMAGE': self._signature(job),
            'DOCUMENT_TITLE': html.escape(f'{title}: {job.site_label or "Unknown Site"}'),
        }
        if job.kind == ReportKind.assessment:
            footer_text = f'Asbestos Assessment Report: {site or "Unknown Site"}'
        else:
            footer_text = f'{report_type} Clearance Certificate: {site or "Unknown Site"}'
        data['FOOTER_TEXT'] = footer_text
        data['PAGE_HEADER'] = self.fill('page_header', data)
        data['SIGN_OFF_BLOCK'] = self.fill('sign_off', data)
        return data

    def _signature(self, job: ReportJob) -> str:
        signature = (job.signature or '').strip()
        if not signature:
            return ''
        if not signature.startswith('data:'):
            signature = f'data:image/png;base64,{signature}'
        return f'<img src="{html.escape(signature, quote=True)}" alt="Signature" />'

    def _inspection_data(self, job: ReportJob, plan: LayoutPlan, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        if job.kind == ReportKind.assessment:
            scope = ''.join(f'<li>{html.escape(entry)}</li>' for entry in job.assessment_scope if entry.strip())
            values['ASSESSMENT_SCOPE'] = f'<ul class="bullets">{scope}</ul>' if scope else ''
            values['INSPECTION_INTRO'] = self.fill('inspection_intro_assessment', values)
            values['INSPECTION_TITLE'] = 'Assessment Details'
            values['TABLE_CAPTION'] = 'Asbestos Materials Register'
            values['INSPECTION_CONCLUSION'] = ''
        else:
            values['INSPECTION_INTRO'] = self.fill('inspection_intro_clearance', values)
            values['INSPECTION_TITLE'] = 'Inspection Details'
            values['TABLE_CAPTION'] = 'Asbestos Removal Areas'
            values['INSPECTION_CONCLUSION'] = self.fill(
                'clearance_certification',
                {**values, 'AIR_MONITORING_RESULTS': self._air_monitoring_results(job)},
            )
        values['ITEM_TABLE'] = self.item_table(job, plan)
        notes = format_rich_text(job.notes)
        values['INSPECTION_NOTES'] = f'<p class="notes">{notes}</p>' if notes else ''
        values['SIGN_OFF_INLINE'] = '' if plan.signoff_on_own_page else data['SIGN_OFF_BLOCK']
        return values

    def _air_monitoring_results(self, job: ReportJob) -> str:
        if not job.air_monitoring:
            return ''
        return f'<p>{AIR_MONITORING_RESULT}</p>'

    def _background_data(self, job: ReportJob, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        if job.kind == ReportKind.assessment:
            values['BACKGROUND_TITLE'] = 'Background Information Regarding Asbestos Assessments'
        else:
            values['BACKGROUND_TITLE'] = f'Background Information Regarding {data["REPORT_TYPE"]} Clearance Inspections'
        values['BACKGROUND_TEXT'] = _BACKGROUND_TEXT[job.kind]

        jurisdiction = (job.jurisdiction or '').upper()
        titles = [
            html.escape(entry.legislation_title)
            for entry in job.legislation
            if entry.legislation_title and (not entry.jurisdiction or entry.jurisdiction.upper() == jurisdiction)
        ]
        values['LEGISLATION'] = (
            '<ul class="bullets">' + ''.join(f'<li>{title}</li>' for title in titles) + '</ul>' if titles else ''
        )
        exclusions = format_rich_text(job.job_specific_exclusions)
        values['JOB_EXCLUSIONS'] = f'<p>{exclusions}</p>' if exclusions else ''
        return values

    def revision_rows(self, job: ReportJob, render_date: date) -> str:
        """Synthetic "Original Issue" row followed by one row per stored revision reason."""
        tz = self.settings.report_timezone
        approver = _text(job.report_approved_by)
        rows = [(0, 'Original Issue', job.original_issue_date)]
        rows.extend((reason.revision_number, reason.reason, reason.revised_at) for reason in job.revision_reasons)
        rendered = []
        for number, reason, when in rows:
            rendered.append(
                self.fill(
                    'revision_row',
                    {
                        'REVISION_REASON': html.escape(reason),
                        'REVISION_NUMBER': str(number),
                        'APPROVED_BY': approver,
                        'REVISION_DATE': format_short_date(when, timezone=tz) or format_short_date(render_date),
                    },
                )
            )
        return ''.join(rendered)

    def item_table(self, job: ReportJob, plan: LayoutPlan) -> str:
        header_cells = ''.join(f'<th>{html.escape(column.heading)}</th>' for column in plan.columns)
        if not job.items:
            rows = self.fill(
                'item_row',
                {
                    'ROW_CLASS': 'empty-row',
                    'CELLS': f'<td class="empty" colspan="{plan.column_count}">{EMPTY_REGISTER_TEXT}</td>',
                },
            )
        else:
            rendered = []
            for index, item in enumerate(job.items):
                cells = ''.join(f'<td>{html.escape(value)}</td>' for value in plan.row_values(index, item))
                rendered.append(self.fill('item_row', {'ROW_CLASS': 'item-row', 'CELLS': cells}))
            rows = ''.join(rendered)
        return self.fill('item_table', {'HEADER_CELLS': header_cells, 'ROWS': rows})

    def photo_items(self, photos: list[PhotoSlot], data: Mapping[str, Any]) -> str:
        rendered = []
        for slot in photos:
            item = slot.item
            location = item.location_description
            if item.room_area and item.room_area.strip() and item.room_area != location:
                location = f'{item.room_area} - {location}' if location else item.room_area
            material = slot.photograph.description or item.material_description
            notes = format_rich_text(item.notes)
            rendered.append(
                self.fill(
                    'photo_item',
                    {
                        'PHOTO_NUMBER': str(slot.number),
                        'PHOTO_SRC': html.escape(slot.photograph.data_uri(), quote=True),
                        'ARROWS': render_arrows(slot.photograph.arrows),
                        'LOCATION': _text(location),
                        'MATERIAL': _text(material),
                        'ITEM_NOTES': f'<div class="photo-notes">{notes}</div>' if notes else '',
                    },
                )
            )
        return ''.join(rendered)

    def _attachment_page(self, appendix: Appendix, slot: AttachmentSlot, data: Mapping[str, Any]) -> ComposedPage:
        attachment = slot.attachment
        legend = ''
        if isinstance(attachment, SitePlan):
            figure_title = _text(attachment.figure_title) or 'Site Plan'
            legend = render_legend(attachment)
        elif isinstance(attachment, AirMonitoringReport):
            shift = format_report_date(attachment.shift_date, timezone=self.settings.report_timezone)
            figure_title = f'Air Monitoring Report - {shift}' if shift else 'Air Monitoring Report'
        else:
            figure_title = _text(attachment.name) or appendix.title
        values = {
            **data,
            'APPENDIX_LETTER': appendix.letter,
            'APPENDIX_TITLE': appendix.title,
            'ATTACHMENT_SRC': html.escape(attachment.data_uri(), quote=True),
            'FIGURE_TITLE': figure_title,
            'LEGEND': legend,
        }
        return self._page('attachment_image_page', values, slot.first_page)

    def _pdf_insert(self, appendix: Appendix, slot: AttachmentSlot) -> PdfInsert:
        label = f'Appendix {appendix.letter} {slot.key}'
        try:
            payload = slot.attachment.raw_bytes()
        except ValueError as exc:
            # merged as an empty buffer so the merger skips it with the other unreadable attachments
            logger.warning('could not decode %s: %s', label, exc)
            payload = b''
        return PdfInsert(slot.key, label, payload, slot.page_count)


def report_title(job: ReportJob) -> str:
    if job.kind == ReportKind.assessment:
        return 'Asbestos Assessment Report'
    if job.clearance_type:
        return f'{job.clearance_type} Asbestos Removal Clearance Certificate'
    return 'Asbestos Removal Clearance Certificate'


def render_arrows(arrows: list[Arrow]) -> str:
    parts = []
    for arrow in arrows:
        color = html.escape(_safe_color(arrow.color, '#f44336'), quote=True)
        parts.append(
            '<svg class="photo-arrow" viewBox="0 0 48 48" '
            f'style="left:{arrow.x:g}%;top:{arrow.y:g}%;transform:rotate({arrow.rotation:g}deg)">'
            f'<path d="M4 24h30M26 14l12 10-12 10" stroke="{color}" stroke-width="5" '
            'fill="none" stroke-linecap="round" /></svg>'
        )
    return ''.join(parts)


def render_legend(site_plan: SitePlan) -> str:
    if not site_plan.legend:
        return ''
    title = _text(site_plan.legend_title) or 'Legend'
    entries = ''.join(
        '<div class="legend-entry">'
        f'<span class="legend-swatch" style="background:{html.escape(_safe_color(entry.color), quote=True)}"></span>'
        f'{html.escape(entry.description)}</div>'
        for entry in site_plan.legend
    )
    return f'<div class="legend"><div class="legend-title">{title}</div>{entries}</div>'
