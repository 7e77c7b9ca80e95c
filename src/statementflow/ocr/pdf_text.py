"""Text extraction from uploaded documents."""
import io
import time
from typing import Optional, Protocol

import pdfplumber
import pypdf
from google import genai
from google.genai import types

from ..ingest.models import ExtractedText
from ..utils.exceptions import ExtractionUnavailable, LLMError, QuotaExceeded
from ..utils.logger import get_logger

logger = get_logger()

PDF_MIME = "application/pdf"
TEXT_MIMES = ("text/plain", "text/csv")
OCR_SERVICE = "ocr"


class QuotaChecker(Protocol):
    def try_acquire(self, service: str) -> bool: ...


class GeminiTextReader:
    """Transcribes scanned documents with Gemini vision."""

    POLL_SECONDS = 2
    PROMPT = (
        "Transcribe all text in this document exactly as printed, page by page, "
        "keeping line breaks, numbers, dates and currency symbols. Output plain text only."
    )

    def __init__(self, api_key: str, model_name: str = "gemini-2.5-flash",
                 client: Optional[genai.Client] = None):
        self.client = client or genai.Client(api_key=api_key)
        self.model_name = model_name

    def transcribe(self, data: bytes, mime_type: str) -> str:
        """
        Upload the document and return its transcription.

        Raises:
            LLMError: If processing fails or the response is empty
        """
        file_upload = self.client.files.upload(
            file=io.BytesIO(data),
            config=types.UploadFileConfig(mime_type=mime_type),
        )
        logger.debug(f"Uploaded for transcription: {file_upload.name}")

        while file_upload.state.name == "PROCESSING":
            time.sleep(self.POLL_SECONDS)
            file_upload = self.client.files.get(name=file_upload.name)

        if file_upload.state.name != "ACTIVE":
            raise LLMError(f"File processing failed: {file_upload.state.name}")

        response = self.client.models.generate_content(
            model=self.model_name,
            contents=[file_upload, self.PROMPT],
        )
        if not response.text:
            raise LLMError("Vision API returned empty response")
        return response.text


class PdfTextExtractor:
    """Extracts text from PDFs and passes plain text through."""

    MIN_TEXT_LENGTH = 50

    def __init__(self, vision_reader: Optional[GeminiTextReader] = None,
                 quota: Optional[QuotaChecker] = None):
        """
        Initialize extractor.

        Args:
            vision_reader: Used for scanned PDFs with no text layer
            quota: Consulted before every vision call
        """
        self.vision_reader = vision_reader
        self.quota = quota

    def extract_text(self, data: bytes, mime_type: str) -> ExtractedText:
        """
        Extract text from document bytes.

        Args:
            data: Document bytes
            mime_type: Declared MIME type

        Returns:
            ExtractedText, possibly empty

        Raises:
            ExtractionUnavailable: For unsupported MIME types
            QuotaExceeded: If a scanned PDF needs transcription and the quota is spent
        """
        if mime_type in TEXT_MIMES:
            text = data.decode("utf-8", errors="replace")
            return ExtractedText(text=text, pages=1)

        if mime_type != PDF_MIME:
            raise ExtractionUnavailable(f"Unsupported document type: {mime_type}")

        text, pages = self._extract_with_pdfplumber(data)
        if len(text) < self.MIN_TEXT_LENGTH:
            logger.info(f"pdfplumber extracted {len(text)} chars, trying pypdf")
            text, pages = self._extract_with_pypdf(data)

        if len(text) < self.MIN_TEXT_LENGTH and self.vision_reader is not None:
            if self.quota is not None and not self.quota.try_acquire(OCR_SERVICE):
                raise QuotaExceeded("Daily OCR quota exhausted")
            logger.info("No usable text layer, transcribing with vision model")
            try:
                text = self.vision_reader.transcribe(data, mime_type)
            except LLMError as e:
                logger.error(f"Vision transcription failed: {e}")
                text = ""

        logger.info(f"Extracted {len(text)} characters from {pages} pages")
        return ExtractedText(text=text, pages=pages)

    @staticmethod
    def _extract_with_pdfplumber(data: bytes) -> tuple:
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                text_parts = []
                for i, page in enumerate(pdf.pages, 1):
                    page_text = page.extract_text()
                    if page_text:
                        text_parts.append(page_text)
                    else:
                        logger.debug(f"pdfplumber: Page {i} extracted no text")
                return "\n".join(text_parts), len(pdf.pages)
        except Exception as e:
            logger.warning(f"pdfplumber extraction failed: {e}")
            return "", 0

    @staticmethod
    def _extract_with_pypdf(data: bytes) -> tuple:
        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            text_parts = [page.extract_text() or "" for page in reader.pages]
            return "\n".join(p for p in text_parts if p), len(reader.pages)
        except Exception as e:
            logger.error(f"pypdf extraction failed: {e}")
            return "", 0
