"""
Paper ingestion: ArXiv lookup or PDF upload, then text extraction.
PyPDF2 handles born-digital PDFs; scanned PDFs fall back to a file-capable LLM.
"""

import io
import asyncio
import logging
from typing import Optional

import PyPDF2

from clients.arxiv_client import normalize_arxiv_id, fetch_paper_metadata, download_pdf
from models.course_models import PaperDocument
from services.generation_service import GenerationService
from utils.exceptions import PaperTutorError, ValidationError

logger = logging.getLogger(__name__)

# Below this, the PDF is probably scanned and PyPDF2 found no text layer
MIN_EXTRACTED_CHARS = 1000
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
UPLOADED_ARXIV_ID = "uploaded"


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Concatenate page text. Raises ValidationError for unreadable PDFs."""
    try:
        pdf_reader = PyPDF2.PdfReader(io.BytesIO(pdf_bytes))
    except Exception as pdf_error:
        logger.error(f"Error reading PDF: {pdf_error}")
        raise ValidationError(
            f"Invalid or corrupted PDF file: {pdf_error}", error_code="INVALID_PDF"
        ) from pdf_error

    pages = []
    for page_num, page in enumerate(pdf_reader.pages, start=1):
        try:
            page_content = page.extract_text() or ""
        except Exception as page_error:
            logger.warning(f"Failed to extract text from page {page_num}: {page_error}")
            page_content = ""
        if page_content.strip():
            pages.append(page_content.strip())
    return "\n\n".join(pages)


class PaperService:
    def __init__(self, generator: Optional[GenerationService] = None):
        self.generator = generator or GenerationService()

    async def _extract_text(self, paper: PaperDocument, pdf_bytes: bytes) -> PaperDocument:
        text = await asyncio.to_thread(extract_pdf_text, pdf_bytes)
        usage = {}

        if len(text) < MIN_EXTRACTED_CHARS:
            logger.info(f"PyPDF2 found {len(text)} chars in {paper.arxiv_id}, using LLM extraction")
            try:
                response = await self.generator.extract_pdf_text(pdf_bytes)
                if len(response.content.strip()) > len(text):
                    text = response.content.strip()
                if response.usage is not None:
                    usage[response.model] = response.usage
            except PaperTutorError as e:
                logger.warning(f"LLM PDF extraction failed for {paper.arxiv_id}: {e.message}")

        if not text.strip():
            raise ValidationError(
                "Could not extract any text from the paper",
                error_code="EMPTY_PAPER",
                context={"arxiv_id": paper.arxiv_id},
            )
        return paper.model_copy(update={"text": text, "token_usage_by_model": usage})

    async def load_arxiv_paper(self, raw_id: str) -> PaperDocument:
        arxiv_id = normalize_arxiv_id(raw_id)
        paper = await fetch_paper_metadata(arxiv_id)
        pdf_bytes = await download_pdf(paper.pdf_url)
        paper = await self._extract_text(paper, pdf_bytes)
        logger.info(f"Loaded ArXiv paper {arxiv_id}: {paper.title} ({len(paper.text)} chars)")
        return paper

    async def load_uploaded_paper(
        self,
        filename: str,
        pdf_bytes: bytes,
        provided_text: Optional[str] = None,
        title: Optional[str] = None,
    ) -> PaperDocument:
        """Uploaded PDF, optionally with text the client already extracted."""
        if not pdf_bytes:
            raise ValidationError("Uploaded file is empty", error_code="EMPTY_FILE")
        if len(pdf_bytes) > MAX_UPLOAD_BYTES:
            raise ValidationError(
                "Uploaded file is too large",
                error_code="FILE_TOO_LARGE",
                context={"max_bytes": MAX_UPLOAD_BYTES},
            )
        if not pdf_bytes.startswith(b"%PDF"):
            raise ValidationError("Uploaded file is not a PDF", error_code="INVALID_PDF")

        paper = PaperDocument(
            arxiv_id=UPLOADED_ARXIV_ID,
            title=title or (filename.rsplit(".", 1)[0] if filename else "Uploaded paper"),
        )
        if provided_text and len(provided_text.strip()) >= MIN_EXTRACTED_CHARS:
            return paper.model_copy(update={"text": provided_text.strip()})
        return await self._extract_text(paper, pdf_bytes)
