from __future__ import annotations

from certreport.report.layout import (
    LayoutPlanner,
    build_appendix_references,
    format_photo_range,
    plan_layout,
)
from certreport.types import ReportJob
from tests.conftest import PNG_DATA_URI, make_item, pdf_data_uri


def _job(job_payload, **kwargs) -> ReportJob:
    return ReportJob.model_validate(job_payload(**kwargs))


def test_signoff_inline_below_threshold_and_own_page_at_threshold(job_payload, settings):
    four = plan_layout(_job(job_payload, photos=[1, 0, 0, 0]), settings=settings)
    five = plan_layout(_job(job_payload, photos=[1, 0, 0, 0, 0]), settings=settings)

    assert not four.signoff_on_own_page
    assert four.page_numbers.sign_off is None
    assert five.signoff_on_own_page
    assert five.page_numbers.sign_off == 4

    assert four.page_numbers.background == 4
    assert five.page_numbers.background == 5
    assert [a.cover_page for a in five.appendices] == [a.cover_page + 1 for a in four.appendices]
    assert five.page_numbers.total == four.page_numbers.total + 1


def test_signoff_threshold_is_configurable(job_payload):
    plan = LayoutPlanner(signoff_item_threshold=2).plan(_job(job_payload, items=2))
    assert plan.signoff_on_own_page


def test_photo_numbering_spans_items_and_skips_excluded(job_payload):
    payload = job_payload(photos=[3, 1])
    payload['items'][0]['photographs'].insert(1, {'data': PNG_DATA_URI, 'includeInReport': False})
    plan = LayoutPlanner().plan(ReportJob.model_validate(payload))

    assert plan.photo_ranges == ['1-3', '4']
    assert [slot.number for slot in plan.photo_slots] == [1, 2, 3, 4]
    assert [slot.item_index for slot in plan.photo_slots] == [0, 0, 0, 1]


def test_item_without_included_photos_gets_dash(job_payload):
    payload = job_payload(photos=[0, 2])
    payload['items'][0] = make_item(0, excluded=2)
    plan = LayoutPlanner().plan(ReportJob.model_validate(payload))
    assert plan.photo_ranges == ['-', '1-2']


def test_photo_pages_hold_two_photos_each(job_payload):
    plan = LayoutPlanner().plan(_job(job_payload, photos=[3, 2]))
    assert [len(page) for page in plan.photo_pages] == [2, 2, 1]
    assert plan.appendix('photographs').content_pages == 3


def test_format_photo_range():
    assert format_photo_range([]) == '-'
    assert format_photo_range([7]) == '7'
    assert format_photo_range([2, 3, 4]) == '2-4'


def test_level_column_is_a_whole_table_decision(job_payload):
    without = LayoutPlanner().plan(_job(job_payload, items=2))
    payload = job_payload(items=2)
    payload['items'][1]['levelFloor'] = 'Level 2'
    job = ReportJob.model_validate(payload)
    with_level = LayoutPlanner().plan(job)

    assert [c.heading for c in without.columns] == [
        'Item', 'Location', 'Material Description', 'Asbestos Type', 'Photo No.',
    ]
    assert 'Level/Floor' in [c.heading for c in with_level.columns]
    assert with_level.row_values(0, job.items[0])[2] == '-'
    assert with_level.row_values(1, job.items[1])[2] == 'Level 2'


def test_assessment_uses_its_own_columns(job_payload):
    plan = LayoutPlanner().plan(_job(job_payload, items=1, kind='assessment'))
    assert [c.heading for c in plan.columns] == [
        'Item', 'Sample Ref', 'Room/Area', 'Location', 'Material',
        'Asbestos Content', 'Condition', 'Risk', 'Photo No.',
    ]


def test_empty_register_column_count(job_payload):
    plan = LayoutPlanner().plan(_job(job_payload, photos=[]))
    assert plan.column_count == 5
    assert plan.photo_ranges == []


def test_appendix_letters_follow_presence(job_payload, pdf_bytes):
    site_plan = {'data': PNG_DATA_URI}
    air = [{'data': pdf_data_uri(pdf_bytes('portrait', 'portrait'))}]

    photos_only = LayoutPlanner().plan(_job(job_payload, photos=[1]))
    assert [(a.key, a.letter) for a in photos_only.appendices] == [('photographs', 'A')]

    with_plan = LayoutPlanner().plan(_job(job_payload, photos=[1], sitePlan=site_plan))
    assert [(a.key, a.letter) for a in with_plan.appendices] == [('photographs', 'A'), ('site_plan', 'B')]

    with_air = LayoutPlanner().plan(
        _job(job_payload, photos=[1], sitePlan=site_plan, airMonitoringReports=air),
        attachment_pages={'air_monitoring_0': 2},
    )
    assert [(a.key, a.letter) for a in with_air.appendices] == [
        ('photographs', 'A'), ('site_plan', 'B'), ('air_monitoring', 'C'),
    ]
    assert with_air.appendix('air_monitoring').content_pages == 2

    plan_only = LayoutPlanner().plan(_job(job_payload, photos=[0], sitePlan=site_plan))
    assert [(a.key, a.letter) for a in plan_only.appendices] == [('site_plan', 'A')]


def test_page_numbers_for_each_appendix(job_payload, pdf_bytes):
    job = _job(
        job_payload,
        photos=[3],
        sitePlan={'data': PNG_DATA_URI},
        fibreAnalysisReport={'data': pdf_data_uri(pdf_bytes('portrait'))},
    )
    plan = LayoutPlanner().plan(job, attachment_pages={'fibre_analysis': 3})

    photos, site, fibre = plan.appendices
    assert (photos.cover_page, photos.content_pages) == (5, 2)
    assert (site.cover_page, site.content_pages) == (8, 1)
    assert site.attachments[0].first_page == 9
    assert (fibre.cover_page, fibre.content_pages) == (10, 3)
    assert fibre.attachments[0].is_pdf
    assert plan.page_numbers.total == 13


def test_pdf_attachment_defaults_to_one_page(job_payload, pdf_bytes):
    job = _job(job_payload, photos=[0], fibreAnalysisReport={'data': pdf_data_uri(pdf_bytes('portrait'))})
    plan = LayoutPlanner().plan(job)
    assert plan.appendix('fibre_analysis').content_pages == 1


def test_appendix_reference_sentence(job_payload):
    job = _job(
        job_payload,
        photos=[1],
        sitePlan={'data': PNG_DATA_URI},
        airMonitoringReports=[{'data': PNG_DATA_URI}],
    )
    plan = LayoutPlanner().plan(job)
    assert plan.appendix_references == (
        'Photographs of the Asbestos Removal Area, Site Plan, and Air Monitoring Report '
        'are presented in Appendix A, Appendix B, and Appendix C respectively.'
    )
    assert build_appendix_references(plan.appendices[:1]) == (
        'Photographs of the Asbestos Removal Area are presented in Appendix A.'
    )
    assert build_appendix_references([]) == ''
