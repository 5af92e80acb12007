from __future__ import annotations

import argparse
import json
import logging
from datetime import date
from pathlib import Path

from certreport.adapters.renderer import build_renderer
from certreport.config import get_settings
from certreport.exceptions import ReportError
from certreport.report.composer import DocumentComposer
from certreport.report.template_store import TEMPLATE_SLOTS, TemplateStore, get_template_store
from certreport.runner import count_attachment_pages, oversized_attachments, run_report, validate_job
from certreport.storage import append_event, output_root, read_json, write_bytes_atomic, write_text_atomic


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _template_store() -> TemplateStore:
    return get_template_store(get_settings().template_dir)


def _load_job_payload(path_arg: str) -> tuple[Path, dict | None, str | None]:
    settings = get_settings()
    job_path = Path(path_arg).expanduser().resolve()
    if not job_path.exists() or not job_path.is_file():
        return job_path, None, f'Job file not found: {job_path}'
    file_size = int(job_path.stat().st_size)
    # base64 inflates payloads by a third; bound the file before decoding anything
    if file_size > int(settings.max_attachment_bytes) * 4:
        return job_path, None, f'Job file too large: {file_size} bytes'
    try:
        payload = read_json(job_path)
    except (OSError, ValueError) as exc:
        return job_path, None, f'Job file is not valid JSON: {exc}'
    if not isinstance(payload, dict):
        return job_path, None, 'Job file must contain a JSON object'
    return job_path, payload, None


def cmd_generate(args: argparse.Namespace) -> int:
    settings = get_settings()
    job_path, payload, error = _load_job_payload(args.job)
    if payload is None:
        _print_json({'status': 'error', 'message': error})
        return 2

    try:
        job = validate_job(payload)
    except ReportError as exc:
        _print_json({'status': 'error', 'kind': type(exc).__name__, 'message': exc.message, 'detail': exc.detail})
        return 2

    oversized = oversized_attachments(job, int(settings.max_attachment_bytes))
    if oversized:
        _print_json(
            {
                'status': 'error',
                'message': (
                    f'Attachments too large: {", ".join(oversized)}, '
                    f'max allowed {int(settings.max_attachment_bytes)} bytes'
                ),
            }
        )
        return 2

    out_dir = output_root(args.output)
    append_event(out_dir, 'generation_started', job_file=str(job_path), job_id=job.id, project_id=job.project_id)

    result = run_report(
        job,
        renderer=build_renderer(settings),
        store=_template_store(),
        settings=settings,
        render_date=args.render_date,
    )
    if not result.ok or result.pdf is None or result.filename is None:
        failure = result.failure
        append_event(
            out_dir,
            'generation_failed',
            job_id=job.id,
            kind=failure.kind if failure else None,
            error=failure.message if failure else None,
            detail=failure.detail if failure else None,
        )
        _print_json(
            {
                'status': 'failed',
                'job_id': job.id,
                'failure': {
                    'kind': failure.kind if failure else None,
                    'message': failure.message if failure else None,
                    'detail': failure.detail if failure else None,
                },
            }
        )
        return 1

    pdf_path = out_dir / result.filename
    write_bytes_atomic(pdf_path, result.pdf)
    for warning in result.warnings:
        append_event(out_dir, 'attachment_skipped', job_id=job.id, warning=warning)
    append_event(
        out_dir,
        'generation_completed',
        job_id=job.id,
        pdf=str(pdf_path),
        page_count=result.page_count,
        warnings=len(result.warnings),
    )
    _print_json(
        {
            'status': 'completed',
            'job_id': job.id,
            'filename': result.filename,
            'report_pdf_path': str(pdf_path),
            'page_count': result.page_count,
            'warnings': result.warnings,
        }
    )
    return 0


def cmd_compose(args: argparse.Namespace) -> int:
    _, payload, error = _load_job_payload(args.job)
    if payload is None:
        _print_json({'status': 'error', 'message': error})
        return 2

    try:
        job = validate_job(payload)
        composer = DocumentComposer(_template_store(), settings=get_settings())
        document = composer.compose(
            job,
            render_date=args.render_date,
            attachment_pages=count_attachment_pages(job),
        )
    except ReportError as exc:
        _print_json({'status': 'error', 'kind': type(exc).__name__, 'message': exc.message, 'detail': exc.detail})
        return 2

    output_path = Path(args.output).expanduser().resolve()
    write_text_atomic(output_path, document.html)
    plan = document.plan
    _print_json(
        {
            'status': 'composed',
            'html_path': str(output_path),
            'html_pages': len(document.pages),
            'pdf_inserts': [insert.label for insert in document.inserts],
            'signoff_on_own_page': plan.signoff_on_own_page,
            'appendices': [
                {'letter': appendix.letter, 'key': appendix.key, 'cover_page': appendix.cover_page}
                for appendix in plan.appendices
            ],
            'expected_page_count': plan.page_numbers.total,
        }
    )
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    store = _template_store()
    try:
        templates = store.load()
    except ReportError as exc:
        _print_json({'status': 'error', 'kind': type(exc).__name__, 'message': exc.message, 'detail': exc.detail})
        return 2
    _print_json(
        {
            'status': 'ok',
            'template_dir': str(store.root),
            'slots': {slot: len(templates[slot]) for slot in TEMPLATE_SLOTS},
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Asbestos clearance and assessment certificate generator')
    sub = parser.add_subparsers(dest='command', required=True)

    generate = sub.add_parser('generate', help='Render a report job to PDF')
    generate.add_argument('--job', required=True, help='Path to the report job JSON file')
    generate.add_argument('--output', required=False, help='Output directory (defaults to OUTPUT_DIR)')
    generate.add_argument('--render-date', type=date.fromisoformat, required=False, help='Override the render date (YYYY-MM-DD)')
    generate.set_defaults(func=cmd_generate)

    compose = sub.add_parser('compose', help='Write the composed HTML without rendering')
    compose.add_argument('--job', required=True, help='Path to the report job JSON file')
    compose.add_argument('--output', required=True, help='Path of the HTML file to write')
    compose.add_argument('--render-date', type=date.fromisoformat, required=False, help='Override the render date (YYYY-MM-DD)')
    compose.set_defaults(func=cmd_compose)

    templates = sub.add_parser('templates', help='List and validate the HTML templates')
    templates.set_defaults(func=cmd_templates)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(get_settings().log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
