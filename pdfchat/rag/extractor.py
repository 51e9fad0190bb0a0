"""PDF text extraction.

Handles:
- Per-page text extraction behind one interface
- Strategy selection by configuration name
- PDF info dictionary (title, author, page count)
"""
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import structlog
from pdfminer.high_level import extract_pages
from pdfminer.layout import LTTextContainer
from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdfpage import PDFPage
from pdfminer.pdfparser import PDFParser
from pdfminer.pdftypes import resolve1
from pdfminer.psparser import PSLiteral

logger = structlog.get_logger()

PDF_MAGIC = b"%PDF"


class ExtractionError(Exception):
    """Raised when no text can be extracted from a document."""


@dataclass
class ExtractedText:
    """Extracted document text with page boundaries."""

    pages: Dict[int, str]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def full_text(self) -> str:
        return "\n\n".join(self.pages[n] for n in sorted(self.pages)).strip()

    @property
    def page_count(self) -> int:
        return len(self.pages)


class TextExtractor(ABC):
    """Extracts page text from a PDF file."""

    name: str = "base"
    # Set on strategies whose output should not be trusted like a real parser's
    low_fidelity: bool = False

    def extract(self, file_path: Path) -> ExtractedText:
        """Extract text from a PDF.

        Args:
            file_path: Path to the PDF file

        Returns:
            ExtractedText with at least one non-empty page

        Raises:
            FileNotFoundError: If the file does not exist
            ExtractionError: If the file is not a PDF or has no extractable text
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"PDF file not found: {file_path}")

        with open(file_path, "rb") as f:
            if f.read(len(PDF_MAGIC)) != PDF_MAGIC:
                raise ExtractionError("Invalid PDF file")

        if self.low_fidelity:
            logger.warning("low_fidelity_extraction", extractor=self.name, path=str(file_path))

        result = self._extract(file_path)

        if not any(text.strip() for text in result.pages.values()):
            raise ExtractionError("No extractable text found")

        logger.info(
            "pdf_text_extracted",
            extractor=self.name,
            path=str(file_path),
            page_count=result.page_count,
            content_length=len(result.full_text),
        )
        return result

    @abstractmethod
    def _extract(self, file_path: Path) -> ExtractedText:
        """Strategy-specific extraction."""


class PdfMinerExtractor(TextExtractor):
    """Layout-aware extraction with pdfminer.six."""

    name = "pdfminer"

    def _extract(self, file_path: Path) -> ExtractedText:
        pages: Dict[int, str] = {}
        try:
            for page_number, page_layout in enumerate(extract_pages(str(file_path)), start=1):
                pages[page_number] = "".join(
                    element.get_text()
                    for element in page_layout
                    if isinstance(element, LTTextContainer)
                )
        except Exception as e:
            raise ExtractionError(f"pdfminer parser error: {e}") from e

        return ExtractedText(pages=pages, metadata=read_pdf_metadata(file_path))


class PdftotextExtractor(TextExtractor):
    """Extraction through the poppler `pdftotext` command line tool."""

    name = "pdftotext"

    def __init__(self, binary: str = "pdftotext", timeout: float = 60.0):
        self.binary = binary
        self.timeout = timeout

    def _extract(self, file_path: Path) -> ExtractedText:
        try:
            completed = subprocess.run(
                [self.binary, "-enc", "UTF-8", str(file_path), "-"],
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExtractionError(f"Command line extraction failed: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise ExtractionError(f"Command line extraction failed: {stderr or completed.returncode}")

        output = completed.stdout.decode("utf-8", errors="replace")
        # pdftotext terminates every page with a form feed
        raw_pages = output.split("\f")
        if raw_pages and not raw_pages[-1].strip():
            raw_pages = raw_pages[:-1]
        pages = {number: text for number, text in enumerate(raw_pages, start=1)}

        return ExtractedText(pages=pages, metadata={"pages": len(pages)})


class RegexExtractor(TextExtractor):
    """Last-resort extraction of literal strings from the raw PDF bytes.

    Ignores compression, fonts and page structure; everything lands on page 1.
    """

    name = "regex"
    low_fidelity = True

    LITERAL_PATTERN = re.compile(rb"\(([^)]+)\)")

    def _extract(self, file_path: Path) -> ExtractedText:
        content = file_path.read_bytes()
        literals = self.LITERAL_PATTERN.findall(content)
        text = " ".join(m.decode("latin-1") for m in literals)
        return ExtractedText(pages={1: text}, metadata={"low_fidelity": True})


def _decode_info_value(value: Any) -> Any:
    value = resolve1(value)
    if isinstance(value, bytes):
        if value.startswith(b"\xfe\xff"):
            return value[2:].decode("utf-16-be", errors="ignore")
        return value.decode("latin-1", errors="ignore")
    if isinstance(value, PSLiteral):
        return value.name
    return value if isinstance(value, (str, int, float)) else str(value)


def read_pdf_metadata(file_path: Path) -> Dict[str, Any]:
    """Read the PDF info dictionary and page count.

    Failures are logged and yield an empty dict; metadata is optional.
    """
    info_keys = {
        "Title": "title",
        "Author": "author",
        "Subject": "subject",
        "Creator": "creator",
        "Producer": "producer",
        "CreationDate": "creation_date",
        "ModDate": "modification_date",
    }
    try:
        with open(file_path, "rb") as f:
            parser = PDFParser(f)
            document = PDFDocument(parser)
            info = document.info[0] if document.info else {}
            metadata = {
                name: _decode_info_value(info[key])
                for key, name in info_keys.items()
                if key in info
            }
            metadata["pages"] = sum(1 for _ in PDFPage.create_pages(document))
            return metadata
    except Exception as e:
        logger.warning("pdf_metadata_extraction_failed", path=str(file_path), error=str(e))
        return {}


_EXTRACTORS = {
    PdfMinerExtractor.name: PdfMinerExtractor,
    PdftotextExtractor.name: PdftotextExtractor,
    RegexExtractor.name: RegexExtractor,
}


def get_extractor(name: str) -> TextExtractor:
    """Create the extractor configured by name.

    Args:
        name: One of 'pdfminer', 'pdftotext', 'regex'

    Raises:
        ValueError: If the name is unknown
    """
    try:
        extractor_cls = _EXTRACTORS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown PDF extractor: {name}") from None

    extractor = extractor_cls()
    logger.info("pdf_extractor_selected", extractor=extractor.name, low_fidelity=extractor.low_fidelity)
    return extractor
