from datetime import datetime, timedelta, timezone

import pikepdf

import config
import pdf_postprocess


def test_pdf_date_formats_offsets():
    utc = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)
    assert pdf_postprocess.pdf_date(utc) == "D:20240305140709+00'00'"

    india = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    assert pdf_postprocess.pdf_date(india) == "D:20240305140709+05'30'"

    west = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone(timedelta(hours=-4)))
    assert pdf_postprocess.pdf_date(west) == "D:20240305140709-04'00'"


def test_stamp_producer_uses_given_time():
    pdf = pikepdf.new()
    pdf_postprocess.stamp_producer(pdf, now=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    assert str(pdf.docinfo.Producer) == config.PRODUCER
    assert str(pdf.docinfo.CreationDate) == "D:20240102030405+00'00'"
    assert str(pdf.docinfo.ModDate) == str(pdf.docinfo.CreationDate)


def test_mark_info_keeps_existing_keys():
    pdf = pikepdf.new()
    pdf.Root.MarkInfo = pikepdf.Dictionary({"/UserProperties": True, "/Marked": False})
    pdf_postprocess.ensure_mark_info(pdf)
    assert pdf.Root.MarkInfo.Marked is True
    assert pdf.Root.MarkInfo.Suspects is False
    assert pdf.Root.MarkInfo.UserProperties is True


def test_viewer_preferences_replaces_non_dictionary():
    pdf = pikepdf.new()
    pdf.Root.ViewerPreferences = pikepdf.Array()
    pdf_postprocess.ensure_viewer_preferences(pdf)
    assert pdf.Root.ViewerPreferences.DisplayDocTitle is True


def test_ensure_language():
    pdf = pikepdf.new()
    pdf_postprocess.ensure_language(pdf, None)
    assert "/Lang" not in pdf.Root
    pdf_postprocess.ensure_language(pdf, "es")
    assert str(pdf.Root.Lang) == "es"
    pdf_postprocess.ensure_language(pdf, "")
    assert "/Lang" not in pdf.Root
