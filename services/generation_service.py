"""
LLM-backed generators for the course pipeline.
Turns prompts into structured results: concepts, lesson titles and lessons.
"""

import json
import re
import logging
from typing import Any, Dict, List, Optional

from clients.llm_client import LLMService
from models.course_models import (
    ConceptExtraction, ExtractedConcept, GeneratedLesson, Importance, LessonTitles, LLMResponse,
)
from prompts.course_prompts import (
    build_concept_extraction_prompt,
    build_lesson_titles_prompt,
    build_lesson_content_prompt,
    build_summary_lesson_prompt,
    build_pdf_extraction_prompt,
)
from utils.exceptions import GenerationError
from utils.model_config import ModelUsage

logger = logging.getLogger(__name__)


def extract_json(text: str) -> Any:
    """Extract a JSON object or array from a model response"""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Look for code blocks, then the outermost object or array
    patterns = [
        r'```json\s*(.*?)\s*```',
        r'```\s*(.*?)\s*```',
        r'\{.*\}',
        r'\[.*\]',
    ]

    for pattern in patterns:
        matches = re.findall(pattern, text, re.DOTALL)
        for match in matches:
            try:
                return json.loads(match)
            except (json.JSONDecodeError, ValueError):
                continue

    logger.error(f"Could not extract JSON from: {text[:500]}")
    raise GenerationError("Failed to parse JSON response", error_code="INVALID_MODEL_OUTPUT")


def strip_markdown_emphasis(title: str) -> str:
    """Remove literal emphasis markers (**, __, *, _) that models wrap titles in."""
    cleaned = re.sub(r"\*+", "", title)
    # Underscores inside identifiers such as d_model are kept
    cleaned = re.sub(r"(?<!\w)_+|_+(?!\w)", "", cleaned)
    return " ".join(cleaned.split())


def parse_lesson_titles(text: str) -> List[str]:
    """Accepts {"lessons": [...]}, a bare JSON list or a numbered/bulleted list."""
    titles: List[str] = []
    try:
        data = extract_json(text)
        if isinstance(data, dict):
            data = data.get("lessons") or data.get("titles") or []
        if isinstance(data, list):
            titles = [str(t.get("title", "")) if isinstance(t, dict) else str(t) for t in data]
    except GenerationError:
        for line in text.splitlines():
            line = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip()
            if line:
                titles.append(line)

    titles = [strip_markdown_emphasis(t) for t in titles]
    return [t for t in titles if t]


def _parse_importance(value: Any) -> Importance:
    try:
        return Importance(str(value).strip().lower())
    except ValueError:
        return Importance.SUPPORTING


class GenerationService:
    """Prompt, call and parse for every generation step"""

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or LLMService()

    async def extract_concepts(self, paper_title: str, paper_text: str) -> ConceptExtraction:
        response = await self.llm.generate(
            build_concept_extraction_prompt(paper_title, paper_text),
            usage=ModelUsage.CONCEPT_EXTRACTION,
        )
        data = extract_json(response.content)
        if isinstance(data, list):
            data = {"concepts": data}

        concepts: List[ExtractedConcept] = []
        seen = set()
        for item in data.get("concepts", []):
            if isinstance(item, str):
                item = {"name": item}
            name = " ".join(str(item.get("name", "")).split())
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            concepts.append(ExtractedConcept(
                name=name,
                importance=_parse_importance(item.get("importance")),
                reasoning=str(item.get("reasoning", "")),
            ))

        if not concepts:
            raise GenerationError(
                "Concept extraction returned no concepts",
                error_code="CONCEPT_EXTRACTION_FAILED",
            )

        return ConceptExtraction(
            title=str(data.get("title") or paper_title),
            description=str(data.get("description", "")),
            concepts=concepts,
            model=response.model,
            usage=response.usage,
        )

    async def generate_lesson_titles(
        self,
        concept: str,
        knowledge_level: str,
        paper_title: str,
        paper_text: str,
        importance: Optional[Importance] = None,
    ) -> LessonTitles:
        response = await self.llm.generate(
            build_lesson_titles_prompt(
                concept, knowledge_level, paper_title, paper_text,
                importance=importance.value if importance else None,
            ),
            usage=ModelUsage.LESSON_TITLES,
        )
        titles = parse_lesson_titles(response.content)
        if not titles:
            raise GenerationError(
                f"No lesson titles generated for {concept}",
                error_code="TITLE_GENERATION_FAILED",
                context={"concept": concept},
            )
        return LessonTitles(titles=titles, model=response.model, usage=response.usage)

    def _parse_lesson(self, response: LLMResponse, fallback_title: str) -> GeneratedLesson:
        try:
            data = extract_json(response.content)
        except GenerationError:
            data = None
        # Anything but a lesson object is markdown, citations such as [1] included
        if not isinstance(data, dict) or "content" not in data:
            data = {"title": fallback_title, "content": response.content}

        content = str(data.get("content") or "").strip()
        if not content:
            raise GenerationError("Lesson content is empty", error_code="INVALID_MODEL_OUTPUT")
        return GeneratedLesson(
            title=str(data.get("title") or ""),
            content=content,
            model=response.model,
            usage=response.usage,
        )

    async def generate_lesson(
        self,
        concept: str,
        lesson_title: str,
        previous_lessons: List[Dict[str, str]],
        knowledge_level: str,
        paper_title: str,
        paper_text: str,
    ) -> GeneratedLesson:
        response = await self.llm.generate(
            build_lesson_content_prompt(
                concept, lesson_title, previous_lessons, knowledge_level, paper_title, paper_text,
            ),
            usage=ModelUsage.LESSON_GENERATION,
        )
        return self._parse_lesson(response, lesson_title)

    async def generate_summary_lesson(
        self,
        concept: str,
        knowledge_level: str,
        paper_title: str,
        paper_text: str,
    ) -> GeneratedLesson:
        response = await self.llm.generate(
            build_summary_lesson_prompt(concept, knowledge_level, paper_title, paper_text),
            usage=ModelUsage.LESSON_GENERATION,
        )
        return self._parse_lesson(response, f"Overview of {concept}")

    async def extract_pdf_text(self, pdf_bytes: bytes) -> LLMResponse:
        """Have a file-capable model read the PDF (scanned papers)"""
        return await self.llm.generate(
            build_pdf_extraction_prompt(),
            usage=ModelUsage.PDF_EXTRACTION,
            file_data=pdf_bytes,
            mime_type="application/pdf",
        )
