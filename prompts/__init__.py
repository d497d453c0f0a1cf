# Prompts module initialization

# Course Generation Prompts
from .course_prompts import (
    build_concept_extraction_prompt,
    build_lesson_titles_prompt,
    build_lesson_content_prompt,
    build_summary_lesson_prompt,
    build_pdf_extraction_prompt,
    build_tutor_system_prompt,
    build_tutor_chat_prompt,
    truncate_paper_text,
    MAX_PAPER_CHARS
)

__all__ = [
    'build_concept_extraction_prompt',
    'build_lesson_titles_prompt',
    'build_lesson_content_prompt',
    'build_summary_lesson_prompt',
    'build_pdf_extraction_prompt',
    'build_tutor_system_prompt',
    'build_tutor_chat_prompt',
    'truncate_paper_text',
    'MAX_PAPER_CHARS'
]
