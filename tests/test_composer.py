from __future__ import annotations

import re
from datetime import date

import pytest

from certreport.exceptions import TemplateLoadError
from certreport.report.composer import PAGE_BREAK, ComposedPage, DocumentComposer, PdfInsert, RenderSegment
from certreport.report.placeholders import NBSP
from certreport.report.template_store import TemplateStore
from certreport.types import ReportJob
from tests.conftest import PNG_DATA_URI, pdf_data_uri

RENDER_DATE = date(2025, 3, 1)


@pytest.fixture
def composer(store, settings) -> DocumentComposer:
    return DocumentComposer(store, settings=settings)


def _compose(composer, payload, **kwargs):
    return composer.compose(ReportJob.model_validate(payload), render_date=RENDER_DATE, **kwargs)


def test_page_order_with_inline_signoff(composer, job_payload):
    document = _compose(composer, job_payload(photos=[1, 0]))
    assert [page.slot for page in document.pages] == [
        'cover', 'version_control', 'inspection_details', 'background', 'appendix_cover', 'photo_page',
    ]
    inspection = document.pages[2].html
    assert 'Please do not hesitate to contact the undersigned' in inspection
    assert 'Page 3' in inspection


def test_signoff_gets_own_page_at_five_items(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0, 0, 0, 0, 0]))
    slots = [page.slot for page in document.pages]
    assert slots[:5] == ['cover', 'version_control', 'inspection_details', 'sign_off_page', 'background']
    assert 'Please do not hesitate' not in document.pages[2].html
    assert 'Page 4' in document.pages[3].html
    assert 'Page 5' in document.pages[4].html


def test_pages_are_joined_with_breaks_and_none_after_last(composer, job_payload):
    document = _compose(composer, job_payload(photos=[3]))
    html = document.html
    assert html.count(PAGE_BREAK) == len(document.pages) - 1
    last_page = document.pages[-1].html
    assert not html.split(last_page, 1)[1].strip().startswith(PAGE_BREAK)


def test_no_recognised_tokens_remain(composer, job_payload):
    document = _compose(composer, job_payload(photos=[2], clientName=None, laaName=''))
    assert re.findall(r'\[[A-Z][A-Z0-9_]*\]', document.html) == []
    assert 'Unknown Client' in document.html
    assert 'Unknown LAA' in document.html


def test_user_text_is_escaped_and_not_substituted(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0], clientName='<script>[SITE_NAME]</script>'))
    assert '&lt;script&gt;[SITE_NAME]&lt;/script&gt;' in document.html
    assert '<script>' not in document.html


def test_dates_and_time_are_formatted(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0], inspectionTime='14:30'))
    inspection = document.pages[2].html
    assert '2:30 PM' in inspection
    assert '26 February 2025' in inspection


def test_revision_rows(composer, job_payload):
    payload = job_payload(
        photos=[0],
        revisionReasons=[
            {'revisionNumber': 1, 'reason': 'Updated site plan', 'revisedAt': '2025-03-10'},
            {'revisionNumber': 2, 'reason': 'Corrected client name'},
        ],
    )
    document = _compose(composer, payload)
    version_control = document.pages[1].html
    rows = re.findall(r'<tr class="revision-row">(.*?)</tr>', version_control, re.S)
    assert len(rows) == 3
    cells = [re.findall(r'<td>(.*?)</td>', row) for row in rows]
    assert [row[1] for row in cells] == ['0', '1', '2']
    assert cells[0][0] == 'Original Issue'
    assert cells[0][3] == '01/03/2025'
    assert cells[1][3] == '10/03/2025'
    assert cells[2][3] == '01/03/2025'
    assert {row[2] for row in cells} == {'Alex Brown'}


def test_original_issue_row_uses_original_issue_date(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0], originalIssueDate='2025-02-27'))
    assert '27/02/2025' in document.pages[1].html


def test_empty_register_row(composer, job_payload):
    document = _compose(composer, job_payload(photos=[]))
    inspection = document.pages[2].html
    assert '<td class="empty" colspan="5">No items found</td>' in inspection


def test_photo_pages_carry_numbers_and_arrows(composer, job_payload):
    payload = job_payload(photos=[2, 1])
    payload['items'][0]['photographs'][0]['arrow'] = {'x': 40, 'y': 60}
    document = _compose(composer, payload)
    photo_pages = [page for page in document.pages if page.slot == 'photo_page']
    assert len(photo_pages) == 2
    assert 'Photograph 1' in photo_pages[0].html and 'Photograph 2' in photo_pages[0].html
    assert 'Photograph 3' in photo_pages[1].html
    assert 'left:40%;top:60%' in photo_pages[0].html
    assert 'Page 6' in photo_pages[0].html


def test_image_site_plan_becomes_a_page_with_legend(composer, job_payload):
    payload = job_payload(
        photos=[0],
        sitePlan={
            'data': PNG_DATA_URI,
            'figureTitle': 'Figure 1: Removal area',
            'legend': [{'color': '#ff0000', 'description': 'Removal area'}],
        },
    )
    document = _compose(composer, payload)
    assert document.inserts == []
    page = document.pages[-1]
    assert page.slot == 'attachment_image_page'
    assert 'Figure 1: Removal area' in page.html
    assert 'background:#ff0000' in page.html
    assert 'Appendix A: Site Plan' in page.html


def test_pdf_attachment_splits_render_segments(composer, job_payload, pdf_bytes):
    air_pdf = pdf_bytes('portrait', 'landscape')
    payload = job_payload(
        photos=[1],
        airMonitoringReports=[{'data': pdf_data_uri(air_pdf)}],
        sitePlan={'data': PNG_DATA_URI},
    )
    document = _compose(composer, payload, attachment_pages={'air_monitoring_0': 2})
    segments = document.segments()
    assert [type(part) for part in segments] == [RenderSegment, PdfInsert]
    assert segments[1].data == air_pdf
    assert segments[1].page_count == 2
    # cover, version control, inspection, background, A cover, photos, B cover, site plan, C cover
    assert segments[0].page_count == 9
    assert segments[0].html.count(PAGE_BREAK) == 8


def test_fibre_report_after_air_monitoring_starts_new_segment(composer, job_payload, pdf_bytes):
    payload = job_payload(
        photos=[0],
        airMonitoringReports=[{'data': pdf_data_uri(pdf_bytes('portrait'))}],
        fibreAnalysisReport={'data': pdf_data_uri(pdf_bytes('portrait'))},
    )
    document = _compose(composer, payload)
    kinds = [type(part).__name__ for part in document.segments()]
    assert kinds == ['RenderSegment', 'PdfInsert', 'RenderSegment', 'PdfInsert']


def test_missing_template_is_fatal(tmp_path, settings, job_payload):
    store = TemplateStore(tmp_path)
    composer = DocumentComposer(store, settings=settings)
    with pytest.raises(TemplateLoadError):
        _compose(composer, job_payload(photos=[0]))


def test_composed_pages_are_numbered(composer, job_payload):
    document = _compose(composer, job_payload(photos=[1]))
    assert [page.page_number for page in document.pages if isinstance(page, ComposedPage)] == [1, 2, 3, 4, 5, 6]


def test_item_notes_appear_with_photographs(composer, job_payload):
    payload = job_payload(photos=[1, 1])
    payload['items'][0]['notes'] = 'Residue removed from **window frame**'
    document = _compose(composer, payload)
    photo_page = next(page for page in document.pages if page.slot == 'photo_page')
    assert '<div class="photo-notes">Residue removed from <strong>window frame</strong></div>' in photo_page.html
    assert photo_page.html.count('photo-notes') == 1


def test_signature_data_uri_with_surrounding_whitespace(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0], signature=f'  {PNG_DATA_URI}\n'))
    assert f'<img src="{PNG_DATA_URI}" alt="Signature" />' in document.html
    assert 'base64,data:' not in document.html


def test_bare_base64_signature_gets_png_prefix(composer, job_payload):
    document = _compose(composer, job_payload(photos=[0], signature=PNG_DATA_URI.split(',', 1)[1]))
    assert f'<img src="{PNG_DATA_URI}" alt="Signature" />' in document.html


def test_air_monitoring_result_sentence(composer, job_payload):
    with_monitoring = _compose(composer, job_payload(photos=[0], airMonitoring=True)).pages[2].html
    assert (
        'Air monitoring was conducted and results were below the clearance indicator of 0.01 fibres per mL.'
        in with_monitoring
    )
    without = _compose(composer, job_payload(photos=[0])).pages[2].html
    assert 'clearance indicator' not in without
