from pathlib import Path

import main
from models import DocumentMetadata


def test_merge_metadata_prefers_command_line_values():
    suggested = DocumentMetadata(title="From File", language="de", author="Someone")
    overrides = DocumentMetadata(title="Given Title", subject="")
    merged = main._merge_metadata(suggested, overrides)
    assert merged == DocumentMetadata(title="Given Title", author="Someone",
                                      subject="", language="de")


def test_process_single_pdf(service, three_page_pdf, tmp_path, capsys):
    source = tmp_path / "annual_report.pdf"
    source.write_bytes(three_page_pdf)
    out_dir = tmp_path / "accessible"
    out_dir.mkdir()

    result = main.process_single_pdf(service, str(source), str(out_dir),
                                     DocumentMetadata(language="en"), generate_alt_text=True)

    assert result.success, result.error
    assert result.image_count == 5
    assert result.wcag_level == "AA"
    assert Path(result.output_path) == out_dir / "annual_report_accessible.pdf"
    assert Path(result.output_path).exists()
    assert result.report["metadataAdded"] == ["title", "language"]
    assert "[4/4]" in capsys.readouterr().out


def test_process_single_pdf_reports_errors(service, tmp_path):
    source = tmp_path / "broken.pdf"
    source.write_bytes(b"not a pdf at all")
    result = main.process_single_pdf(service, str(source), str(tmp_path),
                                     DocumentMetadata(), generate_alt_text=False)
    assert result.success is False
    assert result.error.startswith("MalformedDocument")
