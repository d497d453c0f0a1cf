"""
Estimated LLM spend per course, from accumulated token usage and the model_costs table.
"""

import logging
from typing import Dict, List, Mapping, Optional

from models.course_models import Course, ModelCost, TokenUsage
from utils.course_storage import ModelCostStorage

logger = logging.getLogger(__name__)

TOKENS_PER_MILLION = 1_000_000


def calculate_course_cost(
    usage_by_model: Mapping[str, TokenUsage],
    cost_map: Mapping[str, ModelCost],
) -> float:
    """
    Sum of input/1e6 * input rate + output/1e6 * output rate over every model.
    Models missing from the cost table contribute nothing.
    """
    total = 0.0
    for model_name, usage in usage_by_model.items():
        cost = cost_map.get(model_name)
        if cost is None:
            logger.warning(f"No cost entry for model {model_name}, excluding it from the estimate")
            continue
        total += (usage.input_tokens / TOKENS_PER_MILLION) * cost.cost_per_million_input_tokens
        total += (usage.output_tokens / TOKENS_PER_MILLION) * cost.cost_per_million_output_tokens
    return total


class CostService:
    def __init__(self, cost_storage: Optional[ModelCostStorage] = None):
        self.cost_storage = cost_storage or ModelCostStorage()

    def get_course_cost(self, course: Course) -> float:
        if not course.token_usage_by_model:
            return 0.0
        return calculate_course_cost(course.token_usage_by_model, self.cost_storage.get_model_cost_map())

    def get_costs_for_courses(self, courses: List[Course]) -> Dict[str, float]:
        """Costs keyed by course id, with a single cost-table read."""
        if not any(course.token_usage_by_model for course in courses):
            return {course.id: 0.0 for course in courses}
        cost_map = self.cost_storage.get_model_cost_map()
        return {
            course.id: calculate_course_cost(course.token_usage_by_model, cost_map)
            for course in courses
        }
