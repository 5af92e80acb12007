"""Error taxonomy for report generation.

Fatal errors abort a generation and are returned to the caller as a structured
failure. ``AttachmentMergeError`` is the only recoverable one: the attachment
is dropped with a logged warning and generation carries on.
"""

from __future__ import annotations


class ReportError(Exception):
    """Base class for report generation errors."""

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InputValidationError(ReportError):
    """Raised when required identifying fields of a job are missing."""


class TemplateLoadError(ReportError):
    """Raised when a required HTML fragment is missing or unreadable."""


class RenderError(ReportError):
    """Raised when the HTML to PDF service fails."""


class RenderTimeoutError(RenderError):
    """Raised when the HTML to PDF service exceeds its time budget."""


class AttachmentMergeError(ReportError):
    """Raised when one attachment cannot be parsed or merged."""


__all__ = [
    'ReportError',
    'InputValidationError',
    'TemplateLoadError',
    'RenderError',
    'RenderTimeoutError',
    'AttachmentMergeError',
]
