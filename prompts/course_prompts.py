"""
Prompt templates for paper-to-course generation.
Each builder returns the full prompt string; JSON-returning prompts spell out the exact shape.
"""

from typing import Dict, List, Optional

# Gemini and Grok both take long contexts; keep the paper well under their limits
MAX_PAPER_CHARS = 120000

MATH_FORMATTING_RULES = """- Use LaTeX notation for mathematical expressions:
  * ALWAYS enclose inline math in single dollar signs: $x^2 + y^2 = z^2$
  * ALWAYS enclose display math in double dollar signs: $$\\frac{1}{n} \\sum_{i=1}^n x_i$$
  * NEVER break dollar sign pairs - each $ must have a matching closing $"""


def truncate_paper_text(text: str, max_chars: int = MAX_PAPER_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n\n[... paper truncated ...]"


def build_concept_extraction_prompt(paper_title: str, paper_text: str) -> str:
    """Extract the key concepts of a paper, ordered so prerequisites come first"""
    return f"""You are an expert educator designing a mini-course that teaches a research paper.

PAPER TITLE: {paper_title}

PAPER TEXT:
{truncate_paper_text(paper_text)}

TASK:
Identify the 5-10 concepts a reader must understand to fully follow this paper.
- Order them by dependency: a concept must come after every concept it builds on.
- Include background concepts from the field only when the paper relies on them.
- Classify each concept's importance to understanding THIS paper:
  * "central": the paper's core contribution or the ideas it cannot be understood without
  * "supporting": needed to follow the method or results in detail
  * "peripheral": background or context that only needs a short overview
- Give one sentence of reasoning for each classification.

Also write a short course title and a 1-2 sentence course description aimed at the learner.

OUTPUT FORMAT (JSON - no markdown):
{{
  "title": "Course title",
  "description": "What the learner will understand after the course",
  "concepts": [
    {{"name": "Concept name", "importance": "central|supporting|peripheral", "reasoning": "Why"}}
  ]
}}

Return ONLY the JSON object."""


def build_lesson_titles_prompt(
    concept: str,
    knowledge_level: str,
    paper_title: str,
    paper_text: str,
    importance: Optional[str] = None,
) -> str:
    """Plan the lessons of one module"""
    importance_line = f"\n- Importance to the paper: {importance}" if importance else ""
    return f"""You are an expert educator planning one module of a course about a research paper.

MODULE CONTEXT:
- Paper: {paper_title}
- Concept taught by this module: {concept}{importance_line}

LEARNER:
{knowledge_level}

PAPER TEXT (for reference):
{truncate_paper_text(paper_text)}

TASK:
Plan 2-5 lessons that take this learner from their current level to understanding
"{concept}" well enough to follow how the paper uses it.
- Order lessons so each builds on the previous one.
- Titles are short (3-8 words), specific and free of numbering or markdown.

OUTPUT FORMAT (JSON - no markdown):
{{"lessons": ["Lesson title 1", "Lesson title 2"]}}

Return ONLY the JSON object."""


def _format_previous_lessons(previous_lessons: List[Dict[str, str]]) -> str:
    if not previous_lessons:
        return "None - this is the first lesson of the module."
    return "\n\n".join(
        f"### {lesson['title']}\n{lesson['content']}" for lesson in previous_lessons
    )


def build_lesson_content_prompt(
    concept: str,
    lesson_title: str,
    previous_lessons: List[Dict[str, str]],
    knowledge_level: str,
    paper_title: str,
    paper_text: str,
) -> str:
    """Full lesson for a central or supporting concept"""
    return f"""You are an expert educator writing one lesson of a course about a research paper.

LESSON CONTEXT:
- Paper: {paper_title}
- Module concept: {concept}
- Working lesson title: {lesson_title}

LEARNER:
{knowledge_level}

EARLIER LESSONS IN THIS MODULE (do not repeat them, build on them):
{_format_previous_lessons(previous_lessons)}

PAPER TEXT (for reference):
{truncate_paper_text(paper_text)}

CONTENT REQUIREMENTS:
1. Length: 600-1000 words
2. Format: Markdown with ## for sections and ### for subsections (no # heading, the title is separate)
3. Structure:
   - Why this matters for understanding the paper (2-3 sentences)
   - Core explanation pitched at the learner's level, with a worked example
   - How the paper uses this idea, citing its sections or equations where possible
   - Key takeaways (3-5 bullet points)
{MATH_FORMATTING_RULES}
- You may refine the working title, keep it short and plain text.

OUTPUT FORMAT (JSON - no markdown around it):
{{"title": "Final lesson title", "content": "Full markdown lesson"}}

Return ONLY the JSON object."""


def build_summary_lesson_prompt(
    concept: str,
    knowledge_level: str,
    paper_title: str,
    paper_text: str,
) -> str:
    """Single overview lesson for a peripheral concept"""
    return f"""You are an expert educator writing a short overview lesson for a course about a research paper.

LESSON CONTEXT:
- Paper: {paper_title}
- Concept: {concept} (background for this paper, an overview is enough)

LEARNER:
{knowledge_level}

PAPER TEXT (for reference):
{truncate_paper_text(paper_text)}

CONTENT REQUIREMENTS:
1. Length: 250-450 words
2. Format: Markdown, at most two ## sections
3. Explain what the concept is, the intuition behind it and why the paper needs it
{MATH_FORMATTING_RULES}

OUTPUT FORMAT (JSON - no markdown around it):
{{"title": "Overview of {concept}", "content": "Markdown overview"}}

Return ONLY the JSON object."""


def build_pdf_extraction_prompt() -> str:
    return """Extract the full text of the attached research paper.
- Keep the reading order, section headings and equations (as LaTeX).
- Drop page headers, footers, line numbers and reference-list formatting noise.
- Return plain text only, with no commentary."""


def build_tutor_system_prompt(
    lesson_title: str,
    lesson_content: str,
    paper_title: str,
) -> str:
    """System prompt for the lesson-scoped tutor chat"""
    return f"""You are an AI tutor helping a student understand the lesson: "{lesson_title}"

LESSON CONTENT:
{lesson_content}

This lesson is part of the course about the paper: "{paper_title or 'Unknown Paper'}"

GUIDELINES:
- Answer the student's questions about this lesson and how it relates to the paper.
- Be encouraging and concise. Check understanding with a short follow-up question when useful.
- If a question is unrelated to the lesson, answer briefly and steer back to the material.
{MATH_FORMATTING_RULES}"""


def build_tutor_chat_prompt(history: List[Dict[str, str]], question: str) -> str:
    """Conversation transcript ending with the new question"""
    turns = [
        f"{'Student' if m['role'] == 'user' else 'Assistant'}: {m['content']}"
        for m in history
    ]
    turns.append(f"Student: {question}")
    return "\n\n".join(turns) + "\n\nAssistant:"
