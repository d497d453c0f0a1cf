"""
ArXiv paper lookup and download.
Metadata comes from the ArXiv API through the arxiv package; the PDF itself is fetched with httpx.
"""

import re
import asyncio
import logging
from typing import Optional

import arxiv
import httpx

from models.course_models import PaperDocument
from utils.exceptions import NotFoundError, PaperTutorError, ValidationError

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30.0
ARXIV_PDF_URL = "https://arxiv.org/pdf/{arxiv_id}"

# 2301.12345, 2301.12345v2, hep-th/9901001, math.GT/0309136v1
_NEW_STYLE_ID = re.compile(r"(\d{4}\.\d{4,5})(v\d+)?")
_OLD_STYLE_ID = re.compile(r"([a-z\-]+(?:\.[A-Z]{2})?/\d{7})(v\d+)?")


def normalize_arxiv_id(raw: str) -> str:
    """
    Turn user input into a bare ArXiv id without version.

    Accepts bare ids, "arXiv:" prefixed ids, versioned ids and abs/pdf URLs.
    Raises ValidationError when nothing id-like is found.
    """
    value = (raw or "").strip()
    value = re.sub(r"^arxiv:", "", value, flags=re.IGNORECASE)
    value = re.sub(r"^https?://(www\.|export\.)?arxiv\.org/(abs|pdf)/", "", value)
    value = re.sub(r"\.pdf$", "", value)

    for pattern in (_NEW_STYLE_ID, _OLD_STYLE_ID):
        match = pattern.fullmatch(value)
        if match:
            return match.group(1)

    raise ValidationError(
        f"Invalid ArXiv identifier: {raw}",
        error_code="INVALID_ARXIV_ID",
        context={"arxiv_id": raw},
    )


def _fetch_result(arxiv_id: str) -> Optional[arxiv.Result]:
    client = arxiv.Client(page_size=1, num_retries=2)
    return next(client.results(arxiv.Search(id_list=[arxiv_id])), None)


async def fetch_paper_metadata(arxiv_id: str) -> PaperDocument:
    """Look up title, authors and abstract. Raises NotFoundError for unknown ids."""
    try:
        result = await asyncio.to_thread(_fetch_result, arxiv_id)
    except Exception as e:
        logger.error(f"ArXiv API lookup failed for {arxiv_id}: {e}")
        raise PaperTutorError(
            "ArXiv API request failed",
            error_code="ARXIV_UNAVAILABLE",
            status_code=502,
            context={"arxiv_id": arxiv_id},
        ) from e

    if result is None:
        raise NotFoundError(
            f"Paper {arxiv_id} not found on ArXiv",
            error_code="PAPER_NOT_FOUND",
            context={"arxiv_id": arxiv_id},
        )

    return PaperDocument(
        arxiv_id=arxiv_id,
        title=" ".join(result.title.split()),
        authors=[author.name for author in result.authors],
        abstract=" ".join((result.summary or "").split()),
        pdf_url=result.pdf_url or ARXIV_PDF_URL.format(arxiv_id=arxiv_id),
    )


async def download_pdf(pdf_url: str) -> bytes:
    """Download a paper PDF with a 30 second timeout."""
    try:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
            response = await client.get(pdf_url)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            raise NotFoundError(
                "Paper PDF not found", error_code="PAPER_NOT_FOUND", context={"pdf_url": pdf_url}
            ) from e
        raise PaperTutorError(
            f"Paper download failed with status {e.response.status_code}",
            error_code="PAPER_DOWNLOAD_FAILED",
            status_code=502,
            context={"pdf_url": pdf_url},
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"Paper download failed for {pdf_url}: {e}")
        raise PaperTutorError(
            "Paper download failed",
            error_code="PAPER_DOWNLOAD_FAILED",
            status_code=502,
            context={"pdf_url": pdf_url},
        ) from e

    logger.info(f"Downloaded {pdf_url} ({len(response.content)} bytes)")
    return response.content
