"""
Supabase tables used by the course pipeline: courses, model_costs and chat_messages.
Functions take and return plain dicts; utils/course_storage.py turns them into models.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()

logger = logging.getLogger(__name__)

COURSES_TABLE = "courses"
MODEL_COSTS_TABLE = "model_costs"
CHAT_MESSAGES_TABLE = "chat_messages"

# Columns of the courses table; computed model fields such as planned_concepts are not stored
COURSE_COLUMNS = frozenset({
    "id", "user_id", "title", "description", "paper_title", "paper_authors",
    "paper_url", "arxiv_id", "paper_content", "extracted_concepts",
    "concept_importance", "modules", "knowledge_levels", "token_usage_by_model",
    "created_at", "updated_at",
})

_client: Optional[Client] = None


def get_supabase() -> Client:
    """Shared client, created on first use so imports work without credentials."""
    global _client
    if _client is None:
        url, key = os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_KEY")
        if not (url and key):
            raise RuntimeError("Supabase is not configured: set SUPABASE_URL and SUPABASE_KEY")
        _client = create_client(url, key)
        logger.info("Supabase client created")
    return _client


def _course_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if k in COURSE_COLUMNS}


def _single(response, what: str) -> Dict[str, Any]:
    if not response.data:
        raise RuntimeError(f"Supabase returned no row for {what}")
    return response.data[0]


def _owned_course(query, course_id: str, user_id: str):
    return query.eq("id", course_id).eq("user_id", user_id)


# --- Courses ---

def upsert_course(course_data: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table(COURSES_TABLE) \
        .upsert(_course_row(course_data), on_conflict="id") \
        .execute()
    return _single(response, f"course upsert {course_data.get('id')}")


def get_course_by_id(course_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    """Course row if it exists and belongs to user_id"""
    response = _owned_course(get_supabase().table(COURSES_TABLE).select("*"), course_id, user_id) \
        .limit(1) \
        .execute()
    return response.data[0] if response.data else None


def list_courses_by_user(user_id: str) -> List[Dict[str, Any]]:
    response = get_supabase().table(COURSES_TABLE) \
        .select("*") \
        .eq("user_id", user_id) \
        .order("created_at", desc=True) \
        .execute()
    return response.data or []


def update_course_fields(course_id: str, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Write only the given columns; updated_at is always refreshed."""
    row = _course_row({**fields, "updated_at": datetime.now(timezone.utc).isoformat()})
    response = _owned_course(get_supabase().table(COURSES_TABLE).update(row), course_id, user_id).execute()
    return _single(response, f"course update {course_id}")


def delete_course_by_id(course_id: str, user_id: str) -> bool:
    response = _owned_course(get_supabase().table(COURSES_TABLE).delete(), course_id, user_id).execute()
    return bool(response.data)


# --- Model costs ---

def get_active_model_costs() -> List[Dict[str, Any]]:
    response = get_supabase().table(MODEL_COSTS_TABLE).select("*").eq("is_active", True).execute()
    return response.data or []


# --- Lesson chat ---

def insert_chat_message(message: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table(CHAT_MESSAGES_TABLE).insert(message).execute()
    return _single(response, "chat message")


def get_chat_messages(
    course_id: str,
    user_id: str,
    module_index: int,
    lesson_index: int,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    """The last `limit` messages of a lesson chat, oldest first."""
    response = get_supabase().table(CHAT_MESSAGES_TABLE) \
        .select("role, content, created_at") \
        .eq("course_id", course_id) \
        .eq("user_id", user_id) \
        .eq("module_index", module_index) \
        .eq("lesson_index", lesson_index) \
        .order("created_at", desc=True) \
        .limit(limit) \
        .execute()
    return list(reversed(response.data or []))


def delete_chat_messages(
    course_id: str,
    user_id: str,
    module_index: Optional[int] = None,
    lesson_index: Optional[int] = None,
) -> None:
    """One lesson's chat, or the whole course's chat when no lesson is given."""
    query = get_supabase().table(CHAT_MESSAGES_TABLE) \
        .delete() \
        .eq("course_id", course_id) \
        .eq("user_id", user_id)
    if module_index is not None and lesson_index is not None:
        query = query.eq("module_index", module_index).eq("lesson_index", lesson_index)
    query.execute()
