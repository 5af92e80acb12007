from __future__ import annotations

import re
from datetime import date

from certreport.report.placeholders import parse_report_date
from certreport.types import ReportJob, ReportKind

_ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r'\s+')


def clean_filename_part(value: str | None, *, default: str = 'Unknown') -> str:
    text = _ILLEGAL_FILENAME_CHARS.sub('', value or '')
    text = _WHITESPACE.sub(' ', text).strip()
    return text or default


def report_prefix(job: ReportJob) -> str:
    if job.kind == ReportKind.assessment:
        return 'Asbestos Assessment'
    return f'{job.clearance_type} Clearance' if job.clearance_type else 'Clearance'


def build_report_filename(
    job: ReportJob,
    *,
    fallback_date: date | None = None,
    timezone: str | None = 'Australia/Sydney',
    extension: str = '.pdf',
) -> str:
    """``{project}_{prefix}_{site}_{DD-MM-YYYY}[_{n}].pdf``; the suffix appears from the second report of a job."""
    day = parse_report_date(job.clearance_date, timezone=timezone) or fallback_date
    date_part = day.strftime('%d-%m-%Y') if day is not None else 'Unknown Date'
    parts = [
        clean_filename_part(job.project_id),
        clean_filename_part(report_prefix(job)),
        clean_filename_part(job.site_label, default='Unknown Site'),
        date_part,
    ]
    if job.sequence_number is not None and job.sequence_number >= 2:
        parts.append(str(job.sequence_number))
    return '_'.join(parts) + extension
