"""
FastAPI routes for paper submission and the knowledge assessment.
Submitting a paper extracts its concepts; submitting ratings plans the syllabus.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from typing import Optional
import logging

from models.course_models import AssessmentRequest, Course
from routes.course_routes import course_to_response
from routes.dependencies import get_course_service, get_paper_service
from services.course_service import CourseService
from services.paper_service import PaperService
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["papers"])


def _creation_response(course: Course) -> dict:
    return {
        "course_id": course.id,
        "title": course.title,
        "description": course.description,
        "paper_title": course.paper_title,
        "arxiv_id": course.arxiv_id,
        "concepts": [
            {
                "name": concept,
                "importance": course.concept_importance[concept].importance.value,
                "reasoning": course.concept_importance[concept].reasoning,
            }
            for concept in course.extracted_concepts
        ],
        "next_step": f"/api/v1/courses/{course.id}/assessment",
    }


@router.post("/papers/arxiv", status_code=201)
async def create_course_from_arxiv(
    user_id: str = Form(...),
    arxiv_id: str = Form(...),
    paper_service: PaperService = Depends(get_paper_service),
    course_service: CourseService = Depends(get_course_service),
):
    """
    Create a course from an ArXiv paper.

    Accepts "2301.12345", "arXiv:2301.12345v2" or an arxiv.org abs/pdf URL.
    Returns the extracted concepts, which the learner rates next.
    """
    paper = await paper_service.load_arxiv_paper(arxiv_id)
    course = await course_service.create_course_from_paper(user_id, paper)
    return _creation_response(course)


@router.post("/papers/upload", status_code=201)
async def create_course_from_upload(
    user_id: str = Form(...),
    file: UploadFile = File(...),
    paper_text: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    paper_service: PaperService = Depends(get_paper_service),
    course_service: CourseService = Depends(get_course_service),
):
    """
    Create a course from an uploaded PDF.

    paper_text may carry text the client already extracted; it is used
    when substantial, otherwise the PDF is read server-side.
    """
    if not file.filename or not file.filename.lower().endswith(".pdf"):
        raise ValidationError("Only PDF uploads are supported", error_code="INVALID_FILE_TYPE")

    data = await file.read()
    paper = await paper_service.load_uploaded_paper(file.filename, data, provided_text=paper_text, title=title)
    course = await course_service.create_course_from_paper(user_id, paper)
    return _creation_response(course)


@router.get("/courses/{course_id}/assessment")
async def get_assessment(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """Concepts to rate, 0 (new to me) to 3 (already understand)"""
    return course_service.get_assessment(user_id, course_id)


@router.post("/courses/{course_id}/assessment")
async def submit_assessment(
    course_id: str,
    request: AssessmentRequest,
    course_service: CourseService = Depends(get_course_service),
):
    """
    Submit knowledge ratings and plan the syllabus.

    Every concept rated below 3 becomes a module. The first module's
    lesson titles are ready in the response; its first lesson is
    generated in the background.
    """
    course = await course_service.generate_syllabus(request.user_id, course_id, request.ratings)
    return {
        "course": course_to_response(course),
        "planned_concepts": course.planned_concepts,
    }
