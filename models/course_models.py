"""
Pydantic models for the paper-to-course pipeline.
The Course document is the aggregate root: modules and lessons live inside it.
"""

from pydantic import BaseModel, Field, computed_field
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Enums for type safety and validation
class Importance(str, Enum):
    CENTRAL = "central"
    SUPPORTING = "supporting"
    PERIPHERAL = "peripheral"


class GenerationOutcome(str, Enum):
    GENERATED = "generated"
    ALREADY_COMPLETE = "already_complete"
    IN_PROGRESS = "in_progress"


class NextActionType(str, Enum):
    GENERATE_LESSON = "generate_lesson"
    BACKFILL_TITLES = "backfill_titles"
    COMPLETE = "complete"


# Learner rating scale: 0..3, where 3 means the concept is already understood
MAX_KNOWLEDGE_RATING = 3

KNOWLEDGE_LEVEL_DESCRIPTIONS: Dict[int, str] = {
    0: (
        "The learner has no prior familiarity with this concept. Explain it from first "
        "principles, build intuition with analogies and define every term before using it."
    ),
    1: (
        "The learner has encountered this concept but only understands it at a surface level. "
        "Briefly recap the basics, then focus on building a solid working understanding."
    ),
    2: (
        "The learner is comfortable with the basics of this concept. Skip introductory "
        "material and go into technical depth and the specifics of how the paper uses it."
    ),
}


def describe_knowledge_level(level: Optional[int]) -> str:
    """Natural-language description of a stored knowledge level, used in prompts."""
    if level is None:
        return KNOWLEDGE_LEVEL_DESCRIPTIONS[0]
    return KNOWLEDGE_LEVEL_DESCRIPTIONS.get(level, KNOWLEDGE_LEVEL_DESCRIPTIONS[0])


# Concept models
class ConceptImportance(BaseModel):
    importance: Importance = Importance.SUPPORTING
    reasoning: str = ""


class ExtractedConcept(BaseModel):
    """Concept returned by concept extraction, in dependency order"""
    name: str
    importance: Importance = Importance.SUPPORTING
    reasoning: str = ""


class ConceptExtraction(BaseModel):
    title: str
    description: str = ""
    concepts: List[ExtractedConcept]
    model: Optional[str] = None
    usage: Optional["TokenUsage"] = None


# Token accounting
class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class LLMResponse(BaseModel):
    """Normalized result of one provider call"""
    content: str
    model: str
    provider: str
    usage: Optional[TokenUsage] = None


class ModelCost(BaseModel):
    model_name: str
    cost_per_million_input_tokens: float
    cost_per_million_output_tokens: float
    is_active: bool = True


# Course aggregate
class Lesson(BaseModel):
    title: str
    content: str = ""  # Empty string means "not yet generated"
    completed_at: Optional[datetime] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content)


class Module(BaseModel):
    """One module per knowledge-gap concept"""
    concept: str
    title: str
    description: str = ""
    lessons: List[Lesson] = []


class Course(BaseModel):
    """Full course document"""
    id: str
    user_id: str
    title: str
    description: str = ""
    paper_title: str = ""
    paper_authors: List[str] = []
    paper_url: str = ""
    arxiv_id: str = ""
    paper_content: str = ""
    extracted_concepts: List[str] = []
    concept_importance: Dict[str, ConceptImportance] = {}
    modules: List[Module] = []
    knowledge_levels: Dict[str, int] = {}
    token_usage_by_model: Dict[str, TokenUsage] = {}
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def planned_concepts(self) -> List[str]:
        return [module.concept for module in self.modules]

    def importance_of(self, concept: str) -> Optional[Importance]:
        entry = self.concept_importance.get(concept)
        return entry.importance if entry else None

    def get_module(self, module_index: int) -> Optional[Module]:
        if 0 <= module_index < len(self.modules):
            return self.modules[module_index]
        return None

    def get_lesson(self, module_index: int, lesson_index: int) -> Optional[Lesson]:
        module = self.get_module(module_index)
        if module is None or not 0 <= lesson_index < len(module.lessons):
            return None
        return module.lessons[lesson_index]


# Generation results
class GeneratedLesson(BaseModel):
    title: str
    content: str
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None


class LessonTitles(BaseModel):
    titles: List[str]
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None


class NextAction(BaseModel):
    action: NextActionType
    module_index: Optional[int] = None
    lesson_index: Optional[int] = None


# Paper ingestion
class PaperDocument(BaseModel):
    arxiv_id: str
    title: str
    authors: List[str] = []
    abstract: str = ""
    pdf_url: str = ""
    text: str = ""
    # Usage of LLM text extraction, if the PDF needed it
    token_usage_by_model: Dict[str, TokenUsage] = {}


# Request models
class AssessmentRequest(BaseModel):
    """Knowledge ratings keyed by concept name (0..3)"""
    user_id: str
    ratings: Dict[str, int]


class ChatRequest(BaseModel):
    user_id: str
    message: str = Field(..., min_length=1, max_length=4000)


class NarrationRequest(BaseModel):
    user_id: str
    language: Optional[str] = None
    slow: bool = False


class ChatMessage(BaseModel):
    role: str
    content: str
    created_at: Optional[datetime] = None


class NarrationResult(BaseModel):
    audio_url: str
    cached: bool
    characters: int = 0
    estimated_cost: float = 0.0
    metadata: Dict[str, Any] = {}


ConceptExtraction.model_rebuild()
