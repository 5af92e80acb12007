from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping

from certreport.config import Settings, get_settings
from certreport.types import Attachment, Item, Photograph, ReportJob, ReportKind


EMPTY_REGISTER_TEXT = 'No items found'
NO_PHOTO_RANGE = '-'
APPENDIX_LETTERS = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ'


@dataclass(frozen=True)
class Column:
    key: str
    heading: str


LEVEL_COLUMN = Column('level_floor', 'Level/Floor')

CLEARANCE_COLUMNS: tuple[Column, ...] = (
    Column('item_number', 'Item'),
    Column('location_description', 'Location'),
    LEVEL_COLUMN,
    Column('material_description', 'Material Description'),
    Column('asbestos_type', 'Asbestos Type'),
    Column('photo_range', 'Photo No.'),
)

ASSESSMENT_COLUMNS: tuple[Column, ...] = (
    Column('item_number', 'Item'),
    Column('sample_reference', 'Sample Ref'),
    LEVEL_COLUMN,
    Column('room_area', 'Room/Area'),
    Column('location_description', 'Location'),
    Column('material_description', 'Material'),
    Column('asbestos_content', 'Asbestos Content'),
    Column('condition', 'Condition'),
    Column('risk', 'Risk'),
    Column('photo_range', 'Photo No.'),
)


@dataclass(frozen=True)
class PresenceFlags:
    photographs: bool = False
    site_plan: bool = False
    air_monitoring: bool = False
    fibre_analysis: bool = False

    @classmethod
    def from_job(cls, job: ReportJob) -> 'PresenceFlags':
        return cls(
            photographs=any(item.included_photographs for item in job.items),
            site_plan=job.has_site_plan,
            air_monitoring=any(report.has_content for report in job.air_monitoring_reports),
            fibre_analysis=job.has_fibre_analysis_report,
        )


@dataclass(frozen=True)
class AppendixRule:
    key: str
    title: str
    reference: str
    applies: Callable[[PresenceFlags], bool]
    assessment_reference: str | None = None

    def reference_for(self, kind: ReportKind) -> str:
        if kind == ReportKind.assessment and self.assessment_reference:
            return self.assessment_reference
        return self.reference


# Evaluated in order; letters follow the order of the rules that apply.
APPENDIX_RULES: tuple[AppendixRule, ...] = (
    AppendixRule(
        'photographs',
        'Photographs',
        'Photographs of the Asbestos Removal Area',
        lambda flags: flags.photographs,
        assessment_reference='Photographs of the Assessed Materials',
    ),
    AppendixRule('site_plan', 'Site Plan', 'Site Plan', lambda flags: flags.site_plan),
    AppendixRule('air_monitoring', 'Air Monitoring Report', 'Air Monitoring Report', lambda flags: flags.air_monitoring),
    AppendixRule('fibre_analysis', 'Fibre Analysis Report', 'Fibre Analysis Report', lambda flags: flags.fibre_analysis),
)


@dataclass(frozen=True)
class PhotoSlot:
    number: int
    item_index: int
    item: Item
    photograph: Photograph


@dataclass(frozen=True)
class AttachmentSlot:
    """One attachment placed in an appendix; PDFs may span several pages."""

    key: str
    attachment: Attachment
    is_pdf: bool
    first_page: int
    page_count: int


@dataclass(frozen=True)
class Appendix:
    key: str
    letter: str
    title: str
    reference: str
    cover_page: int
    content_pages: int
    attachments: tuple[AttachmentSlot, ...] = ()


@dataclass(frozen=True)
class PageNumbers:
    cover: int = 1
    version_control: int = 2
    inspection_details: int = 3
    sign_off: int | None = None
    background: int = 4
    total: int = 4


@dataclass
class LayoutPlan:
    kind: ReportKind
    signoff_on_own_page: bool
    include_level_column: bool
    columns: tuple[Column, ...]
    photo_slots: list[PhotoSlot]
    photo_ranges: list[str]
    photo_pages: list[list[PhotoSlot]]
    appendices: list[Appendix]
    page_numbers: PageNumbers
    appendix_references: str
    flags: PresenceFlags = field(default_factory=PresenceFlags)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    def appendix(self, key: str) -> Appendix | None:
        for appendix in self.appendices:
            if appendix.key == key:
                return appendix
        return None

    def row_values(self, index: int, item: Item) -> list[str]:
        values: list[str] = []
        for column in self.columns:
            if column.key == 'item_number':
                values.append(str(index + 1))
            elif column.key == 'photo_range':
                values.append(self.photo_ranges[index])
            else:
                value = getattr(item, column.key, None)
                values.append(str(value).strip() if value not in (None, '') else '-')
        return values


def format_photo_range(numbers: list[int]) -> str:
    if not numbers:
        return NO_PHOTO_RANGE
    if len(numbers) == 1:
        return str(numbers[0])
    return f'{numbers[0]}-{numbers[-1]}'


def join_appendix_letters(letters: list[str]) -> str:
    labels = [f'Appendix {letter}' for letter in letters]
    if len(labels) <= 1:
        return ''.join(labels)
    if len(labels) == 2:
        return f'{labels[0]} and {labels[1]}'
    return ', '.join(labels[:-1]) + f', and {labels[-1]}'


def build_appendix_references(appendices: list[Appendix]) -> str:
    """Sentence pointing readers at each appendix, e.g. for the inspection narrative."""
    if not appendices:
        return ''
    if len(appendices) == 1:
        only = appendices[0]
        verb = 'are' if only.key == 'photographs' else 'is'
        return f'{only.reference} {verb} presented in Appendix {only.letter}.'
    references = [appendix.reference for appendix in appendices]
    if len(references) == 2:
        subject = f'{references[0]} and {references[1]}'
    else:
        subject = ', '.join(references[:-1]) + f', and {references[-1]}'
    letters = join_appendix_letters([appendix.letter for appendix in appendices])
    return f'{subject} are presented in {letters} respectively.'


def attachment_sources(job: ReportJob, key: str) -> list[tuple[str, Attachment]]:
    """Attachments belonging to one appendix, keyed for page counts and merge labels."""
    if key == 'site_plan':
        return [('site_plan', job.site_plan)] if job.has_site_plan and job.site_plan is not None else []
    if key == 'air_monitoring':
        return [
            (f'air_monitoring_{index}', report)
            for index, report in enumerate(job.air_monitoring_reports)
            if report.has_content
        ]
    if key == 'fibre_analysis':
        if job.has_fibre_analysis_report and job.fibre_analysis_report is not None:
            return [('fibre_analysis', job.fibre_analysis_report)]
        return []
    return []


class LayoutPlanner:
    def __init__(
        self,
        *,
        signoff_item_threshold: int = 5,
        photos_per_page: int = 2,
        rules: tuple[AppendixRule, ...] = APPENDIX_RULES,
    ):
        if photos_per_page < 1:
            raise ValueError('photos_per_page must be at least 1')
        self.signoff_item_threshold = signoff_item_threshold
        self.photos_per_page = photos_per_page
        self.rules = rules

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> 'LayoutPlanner':
        settings = settings or get_settings()
        return cls(
            signoff_item_threshold=settings.signoff_item_threshold,
            photos_per_page=settings.photos_per_page,
        )

    def plan(self, job: ReportJob, *, attachment_pages: Mapping[str, int] | None = None) -> LayoutPlan:
        attachment_pages = attachment_pages or {}

        photo_slots: list[PhotoSlot] = []
        photo_ranges: list[str] = []
        next_number = 1
        for item_index, item in enumerate(job.items):
            numbers: list[int] = []
            for photograph in item.included_photographs:
                photo_slots.append(PhotoSlot(next_number, item_index, item, photograph))
                numbers.append(next_number)
                next_number += 1
            photo_ranges.append(format_photo_range(numbers))

        photo_pages = [
            photo_slots[start:start + self.photos_per_page]
            for start in range(0, len(photo_slots), self.photos_per_page)
        ]

        include_level_column = any((item.level_floor or '').strip() for item in job.items)
        base_columns = ASSESSMENT_COLUMNS if job.kind == ReportKind.assessment else CLEARANCE_COLUMNS
        columns = tuple(column for column in base_columns if include_level_column or column is not LEVEL_COLUMN)

        signoff_on_own_page = len(job.items) >= self.signoff_item_threshold
        sign_off_page = 4 if signoff_on_own_page else None
        background_page = 5 if signoff_on_own_page else 4

        flags = PresenceFlags.from_job(job)
        appendices: list[Appendix] = []
        page = background_page
        for rule in self.rules:
            if not rule.applies(flags):
                continue
            letter = APPENDIX_LETTERS[len(appendices)]
            cover_page = page + 1
            slots: list[AttachmentSlot] = []
            if rule.key == 'photographs':
                content_pages = len(photo_pages)
            else:
                content_pages = 0
                for key, attachment in attachment_sources(job, rule.key):
                    if attachment.is_pdf:
                        count = attachment_pages.get(key)
                        count = 1 if count is None else max(count, 0)
                    else:
                        count = 1
                    slots.append(AttachmentSlot(key, attachment, attachment.is_pdf, cover_page + 1 + content_pages, count))
                    content_pages += count
            appendices.append(
                Appendix(
                    key=rule.key,
                    letter=letter,
                    title=rule.title,
                    reference=rule.reference_for(job.kind),
                    cover_page=cover_page,
                    content_pages=content_pages,
                    attachments=tuple(slots),
                )
            )
            page = cover_page + content_pages

        page_numbers = PageNumbers(
            sign_off=sign_off_page,
            background=background_page,
            total=page,
        )
        return LayoutPlan(
            kind=job.kind,
            signoff_on_own_page=signoff_on_own_page,
            include_level_column=include_level_column,
            columns=columns,
            photo_slots=photo_slots,
            photo_ranges=photo_ranges,
            photo_pages=photo_pages,
            appendices=appendices,
            page_numbers=page_numbers,
            appendix_references=build_appendix_references(appendices),
            flags=flags,
        )


def plan_layout(
    job: ReportJob,
    *,
    attachment_pages: Mapping[str, int] | None = None,
    settings: Settings | None = None,
) -> LayoutPlan:
    return LayoutPlanner.from_settings(settings).plan(job, attachment_pages=attachment_pages)
