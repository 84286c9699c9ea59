# planner.py
import logging
from typing import Any, List

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError as PydanticValidationError

from errors import PlanningError
from models import WorkflowPlan, WorkflowStep
from utils import llm_call_helper, parse_llm_json_output

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = (
    "You are an API workflow planner. You turn a user's goal into an ordered list of HTTP calls "
    "against the API described to you. You answer with JSON only."
)

AUTH_PRESENT_NOTE = "User already has a valid authentication token. DO NOT include authentication steps in the workflow."
AUTH_MISSING_NOTE = "No authentication token available. Include authentication as first step if needed."


def build_planning_prompt(schema_description: str, goal: str, has_auth: bool) -> str:
    return (
        f"API documentation:\n{schema_description}\n\n"
        f"User goal: {goal}\n\n"
        f"Authentication: {AUTH_PRESENT_NOTE if has_auth else AUTH_MISSING_NOTE}\n\n"
        "Rules:\n"
        "- Every field marked (REQUIRED) [FOREIGN KEY] in a POST body must come from an earlier GET step "
        "that fetches that resource. Add the GET step if the user did not ask for it.\n"
        "- Reference earlier results with {{name}} placeholders, e.g. {\"role_id\": \"{{role_id}}\"}.\n"
        "- List the response paths to keep in extractFields, e.g. \"0.id\", \"data.token\" or \"[status=active].id\".\n"
        "- Describe fetch steps as 'Fetch <resource>' so their ids can be matched to later placeholders.\n"
        "- Mark a login step with \"isAuthStep\": true and, if known, \"tokenPath\".\n\n"
        "Respond with JSON of this shape:\n"
        "{\"workflowName\": \"...\", \"description\": \"...\", \"steps\": [{\"stepNumber\": 1, "
        "\"description\": \"...\", \"action\": {\"method\": \"GET\", \"endpoint\": \"/path\", \"body\": null, "
        "\"purpose\": \"...\"}, \"extractFields\": [\"0.id\"], \"isAuthStep\": false}]}"
    )


class WorkflowPlanner:
    """Asks the injected chat model for a step list. The model only needs ``ainvoke``."""

    def __init__(self, llm: Any):
        if not hasattr(llm, 'ainvoke'):
            raise TypeError("planner llm must have an 'ainvoke' method.")
        self.llm = llm

    async def plan(self, schema_description: str, goal: str, has_auth: bool = False) -> List[WorkflowStep]:
        """Raises PlanningError when the model's reply has no usable steps."""
        if not goal or not goal.strip():
            raise PlanningError("Cannot plan a workflow without a goal.")

        messages = [
            SystemMessage(content=PLANNER_SYSTEM_PROMPT),
            HumanMessage(content=build_planning_prompt(schema_description, goal, has_auth)),
        ]
        logger.info(f"Planning workflow for goal: {goal[:100]}")
        try:
            llm_output = await llm_call_helper(self.llm, messages)
        except Exception as e:
            raise PlanningError(f"Failed to plan workflow: {e}") from e

        parsed = parse_llm_json_output(llm_output)
        if isinstance(parsed, list):
            parsed = {"steps": parsed}
        if not isinstance(parsed, dict):
            raise PlanningError(f"Invalid workflow plan format: {llm_output[:200]}")
        if not isinstance(parsed.get("steps"), list):
            raise PlanningError('Workflow plan missing required "steps" array')

        try:
            plan = WorkflowPlan.model_validate(parsed)
        except PydanticValidationError as ve:
            logger.error(f"Workflow plan failed validation: {ve}")
            raise PlanningError(f"Workflow plan is malformed: {ve.errors()[0].get('msg', ve)}") from ve

        if not plan.steps:
            raise PlanningError("Could not plan workflow. No steps generated.")
        logger.info(f"Planned workflow '{plan.workflow_name or 'unnamed'}' with {len(plan.steps)} steps.")
        return sorted(plan.steps, key=lambda s: s.step_number)
