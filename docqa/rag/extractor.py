import io
import logging
import re
from typing import List
import zipfile

import docx
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docqa.errors import ParsingError, UnsupportedFormatError

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT = "text/plain"

SUPPORTED_MIME_TYPES = frozenset({PDF, DOCX, TEXT})


def clean_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def extract_text_per_page(data: bytes) -> List[str]:
    reader = PdfReader(io.BytesIO(data))
    return [(page.extract_text() or "") for page in reader.pages]


def extract_text(data: bytes, mime_type: str) -> str:
    """Extract plain text from raw document bytes.

    Pages (PDF) and paragraphs (DOCX) are separated by blank lines so the
    chunker sees them as paragraph boundaries.

    Raises:
        UnsupportedFormatError: For types other than PDF, DOCX and plain text.
        ParsingError: When the bytes cannot be parsed as the declared type.
    """
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise UnsupportedFormatError(f"Unsupported file type: {mime_type}")

    try:
        if mime_type == PDF:
            return clean_text("\n\n".join(extract_text_per_page(data)))
        if mime_type == DOCX:
            document = docx.Document(io.BytesIO(data))
            return clean_text("\n\n".join(p.text for p in document.paragraphs))
        return data.decode("utf-8")
    except (
        PyPdfError,
        PackageNotFoundError,
        zipfile.BadZipFile,
        UnicodeDecodeError,
        ValueError,
        KeyError,
        OSError,
    ) as e:
        logger.error(f"Failed to parse {mime_type} document: {e}")
        raise ParsingError(f"Failed to parse document: {e}") from e
