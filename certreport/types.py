from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


_DATA_URI_PATTERN = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.+-]+)*;base64,', re.IGNORECASE)

_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b'\x89PNG', 'image/png'),
    (b'\xff\xd8', 'image/jpeg'),
    (b'GIF8', 'image/gif'),
    (b'RIFF', 'image/webp'),
)


class ReportKind(str, Enum):
    clearance = 'clearance'
    assessment = 'assessment'


class AttachmentEncoding(str, Enum):
    image = 'image'
    pdf = 'pdf'


def _split_data_uri(value: str) -> tuple[str | None, str]:
    text = value.strip()
    match = _DATA_URI_PATTERN.match(text)
    if match is None:
        return None, text
    mime = match.group('mime')
    return (mime.lower() if mime else None), text[match.end():]


def decode_payload(value: str | bytes) -> bytes:
    """Decode a data URI, bare base64 string or raw bytes into bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    _, payload = _split_data_uri(value)
    return base64.b64decode(payload)


def sniff_mime_type(raw: bytes) -> str | None:
    if raw.startswith(b'%PDF'):
        return 'application/pdf'
    for signature, mime in _IMAGE_SIGNATURES:
        if raw.startswith(signature):
            return mime
    return None


def to_data_uri(value: str | bytes, *, default_mime: str = 'image/png') -> str:
    if isinstance(value, str):
        mime, payload = _split_data_uri(value)
        if mime is not None:
            return value.strip()
        try:
            mime = sniff_mime_type(base64.b64decode(payload[:64] + '=' * (-len(payload[:64]) % 4)))
        except ValueError:
            mime = None
        return f'data:{mime or default_mime};base64,{payload}'
    mime = sniff_mime_type(bytes(value)) or default_mime
    return f'data:{mime};base64,{base64.b64encode(bytes(value)).decode("ascii")}'


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


class Arrow(_Record):
    x: float
    y: float
    rotation: float = -45.0
    color: str = '#f44336'


class Photograph(_Record):
    data: str | bytes
    include_in_report: bool = True
    arrows: list[Arrow] = Field(default_factory=list)
    description: str | None = None
    uploaded_at: datetime | None = None

    @model_validator(mode='before')
    @classmethod
    def _fold_legacy_arrow(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        legacy = value.get('arrow')
        if not isinstance(legacy, dict) or legacy.get('x') is None or legacy.get('y') is None:
            return value
        arrows = list(value.get('arrows') or [])
        if not arrows:
            value = {**value, 'arrows': [legacy]}
        return value

    def data_uri(self) -> str:
        return to_data_uri(self.data, default_mime='image/jpeg')


class Item(_Record):
    location_description: str | None = None
    room_area: str | None = None
    level_floor: str | None = None
    material_description: str | None = None
    asbestos_type: str | None = None
    asbestos_content: str | None = None
    sample_reference: str | None = None
    condition: str | None = None
    risk: str | None = None
    photographs: list[Photograph] = Field(default_factory=list)
    notes: str | None = None

    @model_validator(mode='before')
    @classmethod
    def _fold_legacy_photograph(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        legacy = value.get('photograph')
        if isinstance(legacy, str) and legacy.strip() and not value.get('photographs'):
            value = {**value, 'photographs': [{'data': legacy}]}
        return value

    @property
    def included_photographs(self) -> list[Photograph]:
        return [photo for photo in self.photographs if photo.include_in_report]


class Attachment(_Record):
    data: str | bytes
    content_type: str | None = None
    name: str | None = None

    def raw_bytes(self) -> bytes:
        return decode_payload(self.data)

    @property
    def mime_type(self) -> str | None:
        if self.content_type:
            return self.content_type.lower()
        if isinstance(self.data, str):
            mime, _ = _split_data_uri(self.data)
            if mime:
                return mime
        try:
            return sniff_mime_type(self.raw_bytes()[:16])
        except ValueError:
            return None

    @property
    def encoding(self) -> AttachmentEncoding:
        if self.mime_type == 'application/pdf':
            return AttachmentEncoding.pdf
        return AttachmentEncoding.image

    @property
    def is_pdf(self) -> bool:
        return self.encoding == AttachmentEncoding.pdf

    @property
    def has_content(self) -> bool:
        if isinstance(self.data, str):
            return bool(self.data.strip())
        return bool(self.data)

    def data_uri(self) -> str:
        return to_data_uri(self.data, default_mime=self.mime_type or 'image/png')


class LegendEntry(_Record):
    color: str
    description: str


class SitePlan(Attachment):
    figure_title: str | None = None
    legend_title: str | None = None
    legend: list[LegendEntry] = Field(default_factory=list)


class AirMonitoringReport(Attachment):
    shift_date: datetime | date | None = None


class RevisionReason(_Record):
    revision_number: int
    reason: str
    revised_at: datetime | date | None = None


class LegislationEntry(_Record):
    legislation_title: str | None = None
    text: str | None = None
    jurisdiction: str | None = None


class ReportJob(_Record):
    id: str | None = None
    kind: ReportKind = ReportKind.clearance
    clearance_type: str = 'Non-friable'
    jurisdiction: str = 'ACT'
    project_id: str | None = None
    site_name: str | None = None
    vehicle_description: str | None = None
    client_name: str | None = None
    clearance_date: datetime | date | None = None
    inspection_time: str | None = None
    laa_name: str | None = None
    laa_licence: str | None = None
    asbestos_removalist: str | None = None
    secondary_header: str | None = None

    items: list[Item] = Field(default_factory=list)

    site_plan: SitePlan | None = None
    air_monitoring: bool = False
    air_monitoring_reports: list[AirMonitoringReport] = Field(default_factory=list)
    fibre_analysis_report: Attachment | None = None

    job_specific_exclusions: str | None = None
    notes: str | None = None
    assessment_scope: list[str] = Field(default_factory=list)
    legislation: list[LegislationEntry] = Field(default_factory=list)

    revision_reasons: list[RevisionReason] = Field(default_factory=list)
    report_approved_by: str | None = None
    report_issue_date: datetime | date | None = None
    original_issue_date: datetime | date | None = None
    signature: str | None = None
    sequence_number: int | None = Field(default=None, ge=1)

    @model_validator(mode='after')
    def _air_monitoring_follows_reports(self) -> 'ReportJob':
        if any(report.has_content for report in self.air_monitoring_reports):
            self.air_monitoring = True
        return self

    @property
    def is_vehicle_clearance(self) -> bool:
        return self.kind == ReportKind.clearance and 'vehicle' in self.clearance_type.lower()

    @property
    def site_label(self) -> str | None:
        if self.is_vehicle_clearance and self.vehicle_description:
            return self.vehicle_description
        return self.site_name

    @property
    def has_site_plan(self) -> bool:
        return self.site_plan is not None and self.site_plan.has_content

    @property
    def has_fibre_analysis_report(self) -> bool:
        return self.fibre_analysis_report is not None and self.fibre_analysis_report.has_content


@dataclass
class ReportFailure:
    kind: str
    message: str
    detail: str | None = None


@dataclass
class ReportResult:
    ok: bool
    pdf: bytes | None = None
    filename: str | None = None
    page_count: int = 0
    warnings: list[str] = field(default_factory=list)
    failure: ReportFailure | None = None
