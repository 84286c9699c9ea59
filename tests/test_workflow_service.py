# tests/test_workflow_service.py
"""Tests for plan/validate/execute orchestration."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from errors import PlanningError, ValidationError
from models import ExecutionResult, RequestContext, StepResult
from workflow_service import WorkflowService, format_execution_summary

SCHEMA_TEXT = """## Endpoints

### GET /roles
Responses:
  200: OK

### POST /users
Request Body:
  Fields:
    - role_id: integer (REQUIRED) [FOREIGN KEY]
Responses:
  201: Created
"""


@pytest.fixture
def planner_returning():
    def _planner(steps):
        planner = MagicMock()
        planner.plan = AsyncMock(return_value=steps)
        return planner
    return _planner


@pytest.mark.asyncio
async def test_plan_validates_foreign_keys_before_any_call(make_step, planner_returning, fake_api, api_executor):
    bad_plan = [make_step(1, "Create user", "/users", method="POST", body={"role_id": "{{role_id}}"})]
    service = WorkflowService(api_executor, planner_returning(bad_plan))

    with pytest.raises(ValidationError) as exc_info:
        await service.plan(SCHEMA_TEXT, "create a user")
    assert exc_info.value.missing == {1: ["role_id"]}
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_plan_without_planner_raises(api_executor):
    with pytest.raises(PlanningError):
        await WorkflowService(api_executor).plan(SCHEMA_TEXT, "goal")


@pytest.mark.asyncio
async def test_execute_rejects_invalid_plan_with_zero_http_calls(make_step, fake_api, api_executor, context):
    steps = [make_step(1, "Create user", "/users", method="POST", body={"role_id": "{{role_id}}"})]
    with pytest.raises(ValidationError):
        await WorkflowService(api_executor).execute(steps, context, schema_description=SCHEMA_TEXT)
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_execute_runs_valid_plan(make_step, fake_api, api_executor, context):
    fake_api.add("GET", "/roles", [{"id": 42}]).add("POST", "/users", {"id": 1})
    steps = [
        make_step(1, "Fetch roles", "/roles", extract_fields=["0.id"]),
        make_step(2, "Create user", "/users", method="POST", body={"role_id": "{{role_id}}"}),
    ]
    result = await WorkflowService(api_executor).execute(steps, context, schema_description=SCHEMA_TEXT)
    assert result.success
    assert fake_api.requests[1]["body"] == {"role_id": 42}


@pytest.mark.asyncio
async def test_stream_plans_then_runs(make_step, planner_returning, fake_api, api_executor, context):
    fake_api.add("GET", "/roles", [{"id": 42}])
    service = WorkflowService(api_executor, planner_returning([make_step(1, "Fetch roles", "/roles")]))
    events = []
    result = await service.stream(events.append, context, goal="list roles", schema_description=SCHEMA_TEXT)

    assert [e.type for e in events] == ["planning", "planning", "step_start", "step_complete", "workflow_complete"]
    assert result.success
    service.planner.plan.assert_awaited_once_with(SCHEMA_TEXT, "list roles", False)


@pytest.mark.asyncio
async def test_stream_reports_planning_errors_as_events(make_step, planner_returning, fake_api, api_executor, context):
    bad_plan = [make_step(1, "Create user", "/users", method="POST")]
    service = WorkflowService(api_executor, planner_returning(bad_plan))
    events = []
    result = await service.stream(events.append, context, goal="create user", schema_description=SCHEMA_TEXT)

    assert [e.type for e in events] == ["planning", "workflow_error"]
    assert "role_id" in events[-1].error
    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.missing == {1: ["role_id"]}
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_stream_with_given_steps_skips_planning(make_step, fake_api, api_executor):
    fake_api.add("GET", "/roles", [])
    events = []
    await WorkflowService(api_executor).stream(
        events.append, RequestContext(base_url="https://api.example.com", auth_token="t"),
        steps=[make_step(1, "Fetch roles", "/roles")],
    )
    assert events[0].type == "step_start"


def test_format_execution_summary_success():
    result = ExecutionResult(success=True, status="completed", steps=[
        StepResult(step=1, description="Fetch roles", success=True),
        StepResult(step=2, description="Create user", success=True),
    ])
    assert format_execution_summary(result) == (
        "### Workflow executed with 2 steps\n\n"
        "- ✅ **Step 1:** Fetch roles\n"
        "- ✅ **Step 2:** Create user"
    )


def test_format_execution_summary_auth_expired():
    result = ExecutionResult(
        success=False, status="failed",
        steps=[StepResult(step=1, description="Fetch roles", success=False, error="Authentication token expired", http_code=401)],
        error={"code": "AUTH_EXPIRED", "message": "expired", "step": 1, "http_code": 401},
    )
    summary = format_execution_summary(result)
    assert summary.startswith("### Workflow stopped at step 1")
    assert "- ❌ **Step 1:** Fetch roles (Authentication token expired)" in summary
    assert "Authentication token expired.** Please redo the login" in summary


def _closed_socket_sink(event):
    raise RuntimeError("socket closed")


@pytest.mark.asyncio
async def test_stream_stops_quietly_when_sink_fails_before_planning(make_step, planner_returning, fake_api, api_executor, context):
    service = WorkflowService(api_executor, planner_returning([make_step(1, "Fetch roles", "/roles")]))

    result = await service.stream(_closed_socket_sink, context, goal="list roles", schema_description=SCHEMA_TEXT)

    assert not result.success
    assert result.status == "failed"
    assert "progress sink failed (socket closed)" in result.error.message
    service.planner.plan.assert_not_awaited()
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_stream_returns_rejection_when_sink_fails(make_step, planner_returning, fake_api, api_executor, context):
    bad_plan = [make_step(1, "Create user", "/users", method="POST")]
    service = WorkflowService(api_executor, planner_returning(bad_plan))
    events = []

    def sink(event):
        if event.type == "workflow_error":
            raise RuntimeError("socket closed")
        events.append(event)

    result = await service.stream(sink, context, goal="create user", schema_description=SCHEMA_TEXT)

    assert [e.type for e in events] == ["planning"]
    assert result.error.code == "VALIDATION_ERROR"
    assert fake_api.requests == []
