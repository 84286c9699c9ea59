# workflow_service.py
import logging
from typing import List, Optional, Sequence

from api_executor import HttpExecutor
from errors import PlanningError, ValidationError, WorkflowEngineError
from foreign_key_validator import SchemaDescription, ensure_plan_valid
from models import ErrorInfo, ExecutionResult, RequestContext, WorkflowEvent, WorkflowStep
from planner import WorkflowPlanner
from workflow_executor import AuthSuccessHook, ProgressSink, StepCompleteHook, WorkflowRunner, maybe_await

logger = logging.getLogger(__name__)

AUTH_EXPIRED_NOTICE = "⚠️ **Authentication token expired.** Please redo the login again or ask me to do this for you."


def format_execution_summary(result: ExecutionResult) -> str:
    """Markdown summary with one ✅/❌ line per step that ran."""
    lines = [
        f"- {'✅' if r.success else '❌'} **Step {r.step}:** {r.description}" + (f" ({r.error})" if r.error else "")
        for r in result.steps
    ]
    failed = result.failed_step
    if failed is None:
        header = f"### Workflow executed with {len(result.steps)} steps"
    else:
        header = f"### Workflow stopped at step {failed.step}"
    summary = header + "\n\n" + "\n".join(lines)
    if result.error and result.error.code == "AUTH_EXPIRED":
        summary += "\n\n" + AUTH_EXPIRED_NOTICE
    return summary


def failed_result(error: WorkflowEngineError) -> ExecutionResult:
    """Result for a run that never started, e.g. a plan rejected before any request was sent."""
    return ExecutionResult(success=False, status="failed", error=ErrorInfo(**error.to_info()))


class WorkflowService:
    """Plan, validate, execute. Holds the planner and the shared HTTP executor."""

    def __init__(self, http_executor: HttpExecutor, planner: Optional[WorkflowPlanner] = None):
        self.http_executor = http_executor
        self.planner = planner

    async def plan(self, schema_description: str, goal: str, has_auth: bool = False) -> List[WorkflowStep]:
        """Plans and validates. Raises PlanningError or ValidationError before any API call."""
        if self.planner is None:
            raise PlanningError("Workflow planner is not configured (set GOOGLE_API_KEY).")
        steps = await self.planner.plan(schema_description, goal, has_auth)
        self.validate(steps, schema_description)
        return steps

    def validate(self, steps: Sequence[WorkflowStep], schema_description: Optional[SchemaDescription]) -> None:
        if not steps:
            raise PlanningError("Could not plan workflow. No steps generated.")
        if schema_description:
            ensure_plan_valid(steps, schema_description)

    def _runner(self, steps, context, on_step_complete, on_auth_success, session_id) -> WorkflowRunner:
        return WorkflowRunner(
            steps,
            context,
            self.http_executor,
            on_step_complete=on_step_complete,
            on_auth_success=on_auth_success,
            session_id=session_id,
        )

    async def execute(
        self,
        steps: Sequence[WorkflowStep],
        context: RequestContext,
        schema_description: Optional[SchemaDescription] = None,
        on_step_complete: Optional[StepCompleteHook] = None,
        on_auth_success: Optional[AuthSuccessHook] = None,
        session_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Synchronous mode. Planning-time errors raise; step failures come back in the result."""
        self.validate(steps, schema_description)
        runner = self._runner(steps, context, on_step_complete, on_auth_success, session_id)
        return await runner.run()

    async def _emit(self, sink: ProgressSink, event: WorkflowEvent, session_id: Optional[str]) -> Optional[Exception]:
        """Sends one event; returns the sink's exception instead of raising it."""
        try:
            await maybe_await(sink(event))
        except Exception as e:
            logger.error(f"[{session_id}] Progress sink failed on '{event.type}' event: {e}", exc_info=True)
            return e
        return None

    async def stream(
        self,
        sink: ProgressSink,
        context: RequestContext,
        steps: Optional[Sequence[WorkflowStep]] = None,
        goal: Optional[str] = None,
        schema_description: Optional[str] = None,
        has_auth: Optional[bool] = None,
        on_step_complete: Optional[StepCompleteHook] = None,
        on_auth_success: Optional[AuthSuccessHook] = None,
        session_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Streaming mode. Plans first when no steps are given. Planning-time
        errors are reported as a workflow_error event instead of raised.
        A sink that fails before execution starts stops the run with no API calls.
        """
        try:
            if steps is None:
                sink_error = await self._emit(sink, WorkflowEvent.planning("Planning workflow..."), session_id)
                if sink_error is None:
                    steps = await self.plan(
                        schema_description or "",
                        goal or "",
                        has_auth if has_auth is not None else bool(context.auth_token),
                    )
                    sink_error = await self._emit(sink, WorkflowEvent.planning(f"Planned {len(steps)} steps."), session_id)
                if sink_error is not None:
                    return failed_result(WorkflowEngineError(f"Workflow stopped: progress sink failed ({sink_error})"))
            else:
                self.validate(steps, schema_description)
            runner = self._runner(steps, context, on_step_complete, on_auth_success, session_id)
        except (PlanningError, ValidationError) as e:
            logger.warning(f"[{session_id}] Workflow rejected before execution: {e.message}")
            result = failed_result(e)
            await self._emit(sink, WorkflowEvent.workflow_error(e.message, result), session_id)
            return result

        return await runner.stream(sink)
