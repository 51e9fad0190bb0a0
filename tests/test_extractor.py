"""Tests for PDF text extraction strategies."""
import pytest

from pdfchat.rag.extractor import (
    ExtractionError,
    PdfMinerExtractor,
    PdftotextExtractor,
    RegexExtractor,
    get_extractor,
)


def test_regex_extractor_reads_literal_strings(write_pdf):
    path = write_pdf(body=b"BT (Press the power button.) Tj (Wait for the green light.) Tj ET")

    result = RegexExtractor().extract(path)

    assert result.pages == {1: "Press the power button. Wait for the green light."}
    assert result.metadata["low_fidelity"] is True


def test_regex_extractor_is_flagged_low_fidelity():
    assert RegexExtractor.low_fidelity is True
    assert PdfMinerExtractor.low_fidelity is False


def test_non_pdf_is_rejected(tmp_path):
    path = tmp_path / "notes.pdf"
    path.write_text("plain text pretending to be a PDF")

    with pytest.raises(ExtractionError, match="Invalid PDF file"):
        RegexExtractor().extract(path)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        RegexExtractor().extract(tmp_path / "absent.pdf")


def test_pdf_without_text(write_pdf):
    path = write_pdf(body=b"<< /Type /Catalog >>")

    with pytest.raises(ExtractionError, match="No extractable text"):
        RegexExtractor().extract(path)


def test_pdfminer_rejects_unparseable_document(write_pdf):
    path = write_pdf(body=b"this is not a real PDF body")

    with pytest.raises(ExtractionError):
        PdfMinerExtractor().extract(path)


def test_pdftotext_missing_binary(write_pdf):
    extractor = PdftotextExtractor(binary="definitely-not-installed-pdftotext")

    with pytest.raises(ExtractionError, match="Command line extraction failed"):
        extractor.extract(write_pdf())


@pytest.mark.parametrize("name,cls", [
    ("pdfminer", PdfMinerExtractor),
    ("PDFTOTEXT", PdftotextExtractor),
    ("regex", RegexExtractor),
])
def test_get_extractor(name, cls):
    assert isinstance(get_extractor(name), cls)


def test_get_unknown_extractor():
    with pytest.raises(ValueError):
        get_extractor("ocr")
