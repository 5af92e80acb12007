"""Clearance and assessment certificate PDF generation."""

__version__ = '0.1.0'
