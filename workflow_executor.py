# workflow_executor.py
import inspect
import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from api_executor import HttpExecutor
from errors import AuthExpiredError, PlanningError, StepExecutionError, WorkflowEngineError
from models import (
    ErrorInfo,
    ExecutionResult,
    RequestContext,
    RunStatus,
    StepResult,
    StepStatus,
    WorkflowEvent,
    WorkflowStep,
)
from step_runner import AUTH_TOKEN_KEY, StepRunner
from token_extractor import TokenExtractor, token_extractor as default_token_extractor

logger = logging.getLogger(__name__)

StepCompleteHook = Callable[[int, StepResult], Union[None, Awaitable[None]]]
AuthSuccessHook = Callable[[str, Optional[str]], Union[None, Awaitable[None]]]
ProgressSink = Callable[[WorkflowEvent], Union[None, Awaitable[None]]]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class WorkflowRunner:
    """
    Executes a planned workflow as a strict fail-fast sequence.

    ``iter_events`` is the single source of progress; ``run`` and ``stream``
    are two ways of consuming it. One instance per run.
    """

    def __init__(
        self,
        steps: Sequence[WorkflowStep],
        context: RequestContext,
        http_executor: HttpExecutor,
        on_step_complete: Optional[StepCompleteHook] = None,
        on_auth_success: Optional[AuthSuccessHook] = None,
        session_id: Optional[str] = None,
        token_extractor: TokenExtractor = default_token_extractor,
    ):
        if not steps:
            raise PlanningError("Could not plan workflow. No steps generated.")
        step_numbers = [s.step_number for s in steps]
        duplicates = sorted({n for n in step_numbers if step_numbers.count(n) > 1})
        if duplicates:
            raise PlanningError(f"Workflow plan has duplicate step numbers: {duplicates}")

        self.steps: List[WorkflowStep] = sorted(steps, key=lambda s: s.step_number)
        self.context = context
        self.session_id = session_id or str(uuid.uuid4())
        self.on_step_complete = on_step_complete
        self.on_auth_success = on_auth_success
        self.step_runner = StepRunner(http_executor, token_extractor)

        self.status: RunStatus = "pending"
        self.step_statuses: Dict[int, StepStatus] = {s.step_number: "pending" for s in self.steps}
        self.store: Dict[str, Any] = {}
        self.results: List[StepResult] = []
        self._auth_token: Optional[str] = context.auth_token
        self._started = False
        logger.info(f"[{self.session_id}] WorkflowRunner created with {len(self.steps)} steps.")

    def _build_result(self, error: Optional[WorkflowEngineError] = None) -> ExecutionResult:
        return ExecutionResult(
            success=error is None,
            status=self.status,
            steps=list(self.results),
            extracted_data=dict(self.store),
            error=ErrorInfo(**error.to_info()) if error else None,
        )

    def _error_for(self, result: StepResult) -> StepExecutionError:
        if result.http_code == 401:
            return AuthExpiredError(result.step)
        return StepExecutionError(result.step, f"Step {result.step} failed: {result.error}", result.http_code)

    async def _notify_step_complete(self, result: StepResult) -> None:
        if self.on_step_complete is None:
            return
        try:
            await maybe_await(self.on_step_complete(result.step, result))
        except Exception as e:
            logger.error(f"[{self.session_id}] on_step_complete hook failed for step {result.step}: {e}", exc_info=True)

    async def _pick_up_token(self, step: WorkflowStep, token_before: Any) -> None:
        token = self.store.get(AUTH_TOKEN_KEY)
        if not step.is_auth_step or not token or token == token_before:
            return
        self._auth_token = token
        logger.info(f"[{self.session_id}] Step {step.step_number} produced an authentication token; using it for later steps.")
        if self.on_auth_success is None:
            return
        try:
            await maybe_await(self.on_auth_success(token, self.step_runner.last_token_path))
        except Exception as e:
            logger.error(f"[{self.session_id}] on_auth_success hook failed: {e}", exc_info=True)

    async def iter_events(self) -> AsyncIterator[WorkflowEvent]:
        if self._started:
            raise RuntimeError("WorkflowRunner instances can only be run once.")
        self._started = True
        self.status = "running"
        total = len(self.steps)
        logger.info(f"[{self.session_id}] Starting workflow run ({total} steps).")

        for index, step in enumerate(self.steps):
            self.step_statuses[step.step_number] = "running"
            yield WorkflowEvent.step_start(step, total)

            token_before = self.store.get(AUTH_TOKEN_KEY)
            result = await self.step_runner.run_step(step, self.steps[:index], self.store, self.context, self._auth_token)
            self.results.append(result)
            self.step_statuses[step.step_number] = result.status
            await self._notify_step_complete(result)

            if not result.success:
                self.status = "failed"
                error = self._error_for(result)
                logger.error(f"[{self.session_id}] Step {step.step_number} failed ({result.error}); stopping workflow.")
                yield WorkflowEvent.step_failed(result)
                yield WorkflowEvent.workflow_error(error.message, self._build_result(error))
                return

            await self._pick_up_token(step, token_before)
            logger.info(f"[{self.session_id}] Step {step.step_number}/{total} completed.")
            yield WorkflowEvent.step_complete(result)

        self.status = "completed"
        logger.info(f"[{self.session_id}] Workflow completed successfully.")
        yield WorkflowEvent.workflow_complete(self._build_result())

    async def run(self) -> ExecutionResult:
        """Runs to completion and returns the final result. Step failures are reported in the result, not raised."""
        last_event: Optional[WorkflowEvent] = None
        async for event in self.iter_events():
            last_event = event
        return last_event.result

    async def stream(self, sink: ProgressSink) -> ExecutionResult:
        """
        Runs the workflow, forwarding every event to ``sink`` (sync or async).

        If the sink raises, no further events are sent; the step in flight is
        allowed to finish and the run then stops as failed.
        """
        events = self.iter_events()
        final: Optional[ExecutionResult] = None
        sink_error: Optional[Exception] = None
        try:
            async for event in events:
                if event.is_terminal:
                    final = event.result
                if sink_error is None:
                    try:
                        await maybe_await(sink(event))
                    except Exception as e:
                        sink_error = e
                        logger.error(f"[{self.session_id}] Progress sink failed on '{event.type}' event: {e}. Stopping after the current step.", exc_info=True)
                if sink_error is not None and event.type not in ("step_start", "step_failed"):
                    break
        finally:
            await events.aclose()

        if final is not None:
            return final
        self.status = "failed"
        return self._build_result(WorkflowEngineError(f"Workflow stopped: progress sink failed ({sink_error})"))
