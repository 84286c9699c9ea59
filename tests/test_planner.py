# tests/test_planner.py
"""Tests for the LLM planner adapter."""
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from errors import PlanningError
from planner import AUTH_MISSING_NOTE, AUTH_PRESENT_NOTE, WorkflowPlanner, build_planning_prompt
from utils import extract_json_block, parse_llm_json_output

PLAN = {
    "workflowName": "Create user",
    "steps": [
        {"stepNumber": 2, "description": "Create user", "action": {"method": "post", "endpoint": "/users",
                                                                  "body": {"role_id": "{{role_id}}"}}},
        {"stepNumber": 1, "description": "Fetch roles", "action": {"method": "GET", "endpoint": "/roles"},
         "extractFields": ["0.id"]},
    ],
}


def make_llm(content):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=MagicMock(content=content))
    return llm


@pytest.mark.asyncio
async def test_plan_parses_and_orders_steps():
    planner = WorkflowPlanner(make_llm("```json\n" + json.dumps(PLAN) + "\n```"))
    steps = await planner.plan("### GET /roles", "create a user", has_auth=True)

    assert [s.step_number for s in steps] == [1, 2]
    assert steps[0].extract_fields == ["0.id"]
    assert steps[1].action.method == "POST"
    assert steps[1].action.body == {"role_id": "{{role_id}}"}


@pytest.mark.asyncio
async def test_prompt_contains_schema_goal_and_auth_note():
    llm = make_llm(json.dumps(PLAN))
    await WorkflowPlanner(llm).plan("### GET /roles", "create a user", has_auth=False)
    system_message, human_message = llm.ainvoke.await_args.args[0]
    assert "JSON" in system_message.content
    assert "### GET /roles" in human_message.content
    assert "create a user" in human_message.content
    assert AUTH_MISSING_NOTE in human_message.content


@pytest.mark.asyncio
async def test_bare_list_reply_is_accepted():
    steps = await WorkflowPlanner(make_llm(json.dumps(PLAN["steps"]))).plan("", "goal")
    assert len(steps) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [
    "I cannot help with that.",
    json.dumps({"workflowName": "x"}),
    json.dumps({"steps": []}),
    json.dumps({"steps": [{"stepNumber": 0, "description": "bad", "action": {"endpoint": "/x"}}]}),
    json.dumps({"steps": [{"description": "no number", "action": {"endpoint": "/x"}}]}),
])
async def test_unusable_replies_raise_planning_error(reply):
    with pytest.raises(PlanningError):
        await WorkflowPlanner(make_llm(reply)).plan("", "goal")


@pytest.mark.asyncio
async def test_llm_failure_raises_planning_error():
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=RuntimeError("quota exceeded"))
    with pytest.raises(PlanningError, match="quota exceeded"):
        await WorkflowPlanner(llm).plan("", "goal")
    assert llm.ainvoke.await_count == 2


@pytest.mark.asyncio
async def test_empty_goal_is_rejected():
    with pytest.raises(PlanningError):
        await WorkflowPlanner(make_llm("{}")).plan("", "  ")


def test_llm_without_ainvoke_is_rejected():
    with pytest.raises(TypeError):
        WorkflowPlanner(object())


def test_build_planning_prompt_auth_notes():
    assert AUTH_PRESENT_NOTE in build_planning_prompt("s", "g", True)


class TestJsonHelpers:
    def test_extract_json_block_strips_fences_and_prose(self):
        assert extract_json_block("```json\n{\"a\": 1}\n```") == '{"a": 1}'
        assert extract_json_block("Here is the plan: [1, 2]") == "[1, 2]"

    def test_parse_returns_none_on_bad_json(self):
        assert parse_llm_json_output("{not json") is None
        assert parse_llm_json_output(None) is None

    def test_parse_returns_plain_data(self):
        assert parse_llm_json_output('```json\n{"steps": []}\n```') == {"steps": []}
        assert parse_llm_json_output("Plan: [{\"stepNumber\": 1}]") == [{"stepNumber": 1}]
