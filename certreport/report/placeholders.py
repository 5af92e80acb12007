from __future__ import annotations

import html
import re
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Mapping
from zoneinfo import ZoneInfo


NBSP = '\u00a0'

TOKEN_PATTERN = re.compile(r'\[([A-Z][A-Z0-9_]*)\]')

_TIME_24H_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')
_AM_PM_SUFFIX_PATTERN = re.compile(r'\s*[AP]\.?M\.?$', re.IGNORECASE)
_BOLD_PATTERN = re.compile(r'\*\*(.*?)\*\*')

DEFAULT_FALLBACKS: Mapping[str, str] = MappingProxyType(
    {
        'SITE_NAME': 'Unknown Site',
        'SITE_ADDRESS': 'Unknown Address',
        'CLIENT_NAME': 'Unknown Client',
        'PROJECT_ID': 'Unknown',
        'LAA_NAME': 'Unknown LAA',
        'LAA_LICENCE': 'AA00031',
        'ASBESTOS_REMOVALIST': 'Unknown Removalist',
        'REPORT_TYPE': 'Non-friable',
        'ASBESTOS_TYPE': 'non-friable',
        'CLEARANCE_DATE': 'Unknown Date',
        'INSPECTION_DATE': 'Unknown Date',
        'INSPECTION_TIME': 'Inspection Time',
        'ISSUE_DATE': 'Unknown Date',
        'APPROVED_BY': 'Unknown',
        'LOCATION': 'Unknown Location',
        'MATERIAL': 'Unknown Material',
        'SIGNATURE_IMAGE': '',
        'APPENDIX_REFERENCES': '',
    }
)


def parse_report_date(value: Any, *, timezone: str | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is not None and timezone:
            value = value.astimezone(ZoneInfo(timezone))
        return value.date()
    if isinstance(value, date):
        return value
    return None


def format_report_date(value: Any, *, timezone: str | None = 'Australia/Sydney') -> str | None:
    """Format as ``D<nbsp>Month YYYY``; ``None`` when the value is absent or unparseable."""
    day = parse_report_date(value, timezone=timezone)
    if day is None:
        return None
    return f'{day.day}{NBSP}{day.strftime("%B")} {day.year}'


def format_short_date(value: Any, *, timezone: str | None = 'Australia/Sydney') -> str | None:
    day = parse_report_date(value, timezone=timezone)
    if day is None:
        return None
    return f'{day.day:02d}/{day.month:02d}/{day.year}'


def format_report_time(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _AM_PM_SUFFIX_PATTERN.search(text):
        return text
    match = _TIME_24H_PATTERN.match(text)
    if match is None:
        return text
    hours = int(match.group(1))
    minutes = match.group(2)
    if hours > 23 or int(minutes) > 59:
        return text
    suffix = 'PM' if hours >= 12 else 'AM'
    if hours == 0:
        hours = 12
    elif hours > 12:
        hours -= 12
    return f'{hours}:{minutes} {suffix}'


def format_rich_text(text: str | None) -> str:
    """Render stored narrative text (``[BULLET]``, ``**bold**``, ``[BR]``) as HTML."""
    if not text:
        return ''
    lines = html.escape(str(text)).replace('\r\n', '\n').split('\n')

    processed: list[str] = []
    bullets: list[str] = []
    for raw in lines:
        line = raw.strip()
        if not line:
            # blank lines inside a bullet block do not end it
            if bullets:
                continue
            processed.append('')
            continue
        if line.startswith('[BULLET]'):
            bullets.append(line[len('[BULLET]'):].strip())
            continue
        if bullets:
            processed.append('<ul class="bullets">' + ''.join(f'<li>{b}</li>' for b in bullets) + '</ul>')
            bullets = []
        processed.append(line)
    if bullets:
        processed.append('<ul class="bullets">' + ''.join(f'<li>{b}</li>' for b in bullets) + '</ul>')

    result = '<br>'.join(processed)
    result = _BOLD_PATTERN.sub(r'<strong>\1</strong>', result)
    return result.replace('[BR]', '<br>')


class PlaceholderEngine:
    """Single-pass ``[TOKEN]`` substitution with per-token fallback text.

    A token is recognised when it is a key of the data mapping or has a
    fallback. Values are inserted as-is and never re-scanned, so a value
    containing bracketed text is not substituted again. Unrecognised tokens
    are left verbatim.
    """

    def __init__(self, fallbacks: Mapping[str, str] | None = None):
        self.fallbacks = MappingProxyType(dict(DEFAULT_FALLBACKS if fallbacks is None else fallbacks))

    def is_recognised(self, token: str, data: Mapping[str, Any]) -> bool:
        return token in data or token in self.fallbacks

    def resolve(self, token: str, data: Mapping[str, Any]) -> str | None:
        if token not in data and token not in self.fallbacks:
            return None
        value = data.get(token)
        if value is None or (isinstance(value, str) and value == ''):
            return self.fallbacks.get(token, '')
        return str(value)

    def substitute(self, template: str, data: Mapping[str, Any]) -> str:
        def replace(match: re.Match[str]) -> str:
            resolved = self.resolve(match.group(1), data)
            return match.group(0) if resolved is None else resolved

        return TOKEN_PATTERN.sub(replace, template)

    def remaining_tokens(self, text: str, data: Mapping[str, Any]) -> list[str]:
        return [token for token in TOKEN_PATTERN.findall(text) if self.is_recognised(token, data)]


_default_engine = PlaceholderEngine()


def substitute(template: str, data: Mapping[str, Any]) -> str:
    return _default_engine.substitute(template, data)
