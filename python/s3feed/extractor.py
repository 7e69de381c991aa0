"""
Extractor - Text and metadata extraction from downloaded objects.

Uses pdftotext CLI for PDFs (5-10x faster than pypdf) with fallback
to pure Python libraries when CLI tools are unavailable. Works on bytes
since objects are never written to local disk.
"""

import io
import logging
import mimetypes
import shutil
import subprocess
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Protocol, Tuple

from .errors import ExtractError


logger = logging.getLogger(__name__)


# Check for pdftotext availability at module load
_PDFTOTEXT_AVAILABLE = shutil.which("pdftotext") is not None
if not _PDFTOTEXT_AVAILABLE:
    logger.debug("pdftotext not found, PDF extraction will use pypdf")


class ContentExtractor(Protocol):
    """Turns raw bytes plus a file name into text and metadata."""

    def extract(self, data: bytes, name: str) -> Tuple[str, Dict[str, Any]]: ...


class Extractor:
    """
    Format-aware text extractor.

    Routes on the file extension; anything unknown is decoded as text.
    """

    def __init__(self, pdftotext_timeout: float = 30.0):
        self.pdftotext_timeout = pdftotext_timeout

    def extract(self, data: bytes, name: str) -> Tuple[str, Dict[str, Any]]:
        """
        Extract plain text and metadata.

        Args:
            data: Object bytes
            name: File name, used to pick the format

        Returns:
            (text, metadata) with metadata always containing content_type
            and content_length

        Raises:
            ExtractError: the content cannot be parsed
        """
        ext = PurePosixPath(name).suffix.lower()
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        metadata: Dict[str, Any] = {
            "content_type": content_type,
            "content_length": len(data),
        }

        try:
            if ext == ".pdf":
                text = self._extract_pdf(data, name, metadata)
            elif ext == ".docx":
                text = self._extract_docx(data, metadata)
            else:
                text = self._extract_text(data, name, metadata)
        except ExtractError:
            raise
        except Exception as e:
            raise ExtractError(name, f"Cannot extract {name}: {e}") from e

        return text, metadata

    def _extract_pdf(self, data: bytes, name: str, metadata: Dict[str, Any]) -> str:
        """Extract PDF text using pdftotext CLI (fast) or pypdf (fallback)."""
        from pypdf import PdfReader

        text = self._extract_pdf_cli(data, name) if _PDFTOTEXT_AVAILABLE else None

        # Metadata is best effort once pdftotext has produced the text
        try:
            reader = PdfReader(io.BytesIO(data))
            self._read_pdf_info(reader, metadata)
        except Exception as e:
            if text is None:
                raise
            logger.debug(f"pypdf cannot read {name}, keeping pdftotext output: {e}")
            return text

        if text is not None:
            return text
        return self._extract_pdf_pypdf(reader)

    def _read_pdf_info(self, reader, metadata: Dict[str, Any]):
        metadata["page_count"] = len(reader.pages)
        info = reader.metadata
        if info is not None:
            if info.title:
                metadata["title"] = str(info.title)
            if info.author:
                metadata["author"] = str(info.author)

    def _extract_pdf_cli(self, data: bytes, name: str) -> Optional[str]:
        """Extract PDF text using pdftotext reading from stdin."""
        try:
            result = subprocess.run(
                ["pdftotext", "-layout", "-nopgbrk", "-", "-"],
                input=data,
                capture_output=True,
                timeout=self.pdftotext_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"pdftotext timeout for {name}")
            return None
        if result.returncode != 0:
            logger.debug(f"pdftotext failed for {name}: {result.stderr!r}")
            return None
        return result.stdout.decode("utf-8", errors="replace").strip()

    def _extract_pdf_pypdf(self, reader) -> str:
        """Extract PDF text using pypdf (pure Python fallback)."""
        text_parts = []
        for page in reader.pages:
            if text := page.extract_text():
                text_parts.append(text)
        return "\n".join(text_parts)

    def _extract_docx(self, data: bytes, metadata: Dict[str, Any]) -> str:
        """Extract text and core properties from a Word document."""
        from docx import Document

        doc = Document(io.BytesIO(data))
        props = doc.core_properties
        if props.title:
            metadata["title"] = props.title
        if props.author:
            metadata["author"] = props.author
        return "\n".join(p.text for p in doc.paragraphs if p.text)

    def _extract_text(self, data: bytes, name: str, metadata: Dict[str, Any]) -> str:
        """Decode a text file, rejecting binary content."""
        if b"\x00" in data[:8192]:
            raise ExtractError(name, f"Cannot decode {name} (binary?)")
        try:
            text = data.decode("utf-8")
            metadata["encoding"] = "utf-8"
        except UnicodeDecodeError:
            text = data.decode("latin-1")
            metadata["encoding"] = "latin-1"
        return text
