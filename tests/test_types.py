from __future__ import annotations

import base64

from certreport.types import Attachment, AttachmentEncoding, Item, Photograph, ReportJob, decode_payload, to_data_uri
from tests.conftest import PNG_BASE64, PNG_DATA_URI


def test_legacy_arrow_is_folded_into_arrows():
    photo = Photograph.model_validate({'data': PNG_DATA_URI, 'arrow': {'x': 10, 'y': 20, 'color': '#00ff00'}})
    assert len(photo.arrows) == 1
    assert (photo.arrows[0].x, photo.arrows[0].y, photo.arrows[0].color) == (10, 20, '#00ff00')
    assert photo.arrows[0].rotation == -45


def test_legacy_photograph_field_becomes_a_photo():
    item = Item.model_validate({'locationDescription': 'Kitchen', 'photograph': PNG_DATA_URI})
    assert [photo.data for photo in item.photographs] == [PNG_DATA_URI]


def test_excluded_photographs_are_kept_but_not_included():
    item = Item.model_validate(
        {'photographs': [{'data': PNG_DATA_URI}, {'data': PNG_DATA_URI, 'includeInReport': False}]}
    )
    assert len(item.photographs) == 2
    assert len(item.included_photographs) == 1


def test_attachment_encoding_detection():
    pdf_b64 = base64.b64encode(b'%PDF-1.4\n%%EOF').decode('ascii')
    assert Attachment(data=f'data:application/pdf;base64,{pdf_b64}').encoding == AttachmentEncoding.pdf
    assert Attachment(data=pdf_b64).is_pdf
    assert Attachment(data=b'%PDF-1.7').is_pdf
    assert Attachment(data=PNG_BASE64).encoding == AttachmentEncoding.image
    assert not Attachment(data='  ').has_content


def test_data_uri_helpers():
    raw = decode_payload(PNG_DATA_URI)
    assert raw.startswith(b'\x89PNG')
    assert decode_payload(PNG_BASE64) == raw
    assert to_data_uri(PNG_BASE64).startswith('data:image/png;base64,')
    assert to_data_uri(raw) == PNG_DATA_URI


def test_air_monitoring_flag_follows_reports():
    job = ReportJob.model_validate({'airMonitoringReports': [{'data': PNG_DATA_URI}]})
    assert job.air_monitoring
    assert not ReportJob.model_validate({}).air_monitoring


def test_vehicle_clearance_site_label():
    job = ReportJob.model_validate(
        {'clearanceType': 'Vehicle/Equipment', 'siteName': 'Depot', 'vehicleDescription': 'Excavator 12'}
    )
    assert job.is_vehicle_clearance
    assert job.site_label == 'Excavator 12'
