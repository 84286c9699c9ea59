# models.py
import json
import shlex
from typing import Any, Dict, List, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from errors import WorkflowEngineError, error_from_info


StepStatus = Literal["pending", "running", "completed", "failed"]
RunStatus = Literal["pending", "running", "completed", "failed"]
EventType = Literal[
    "planning",
    "step_start",
    "step_complete",
    "step_failed",
    "workflow_complete",
    "workflow_error",
]

# --- Plan Models ---
class StepAction(BaseModel):
    """The HTTP action template of a single workflow step."""
    method: str = Field("GET", description="HTTP method (GET, POST, PUT, PATCH, DELETE).")
    endpoint: str = Field(..., description="Endpoint path or absolute URL. May contain {{name}} markers.")
    body: Optional[Dict[str, Any]] = Field(None, description="JSON body template. String leaves may contain {{name}} markers.")
    purpose: Optional[str] = Field(None, description="Short planner note on why this call is made.")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator('method', mode='before')
    @classmethod
    def normalize_method(cls, value: Any) -> str:
        return str(value or "GET").upper()


class WorkflowStep(BaseModel):
    """One planned HTTP call. Produced by the planner and never modified afterwards."""
    step_number: int = Field(..., alias="stepNumber", ge=1, description="1-based position; defines execution order.")
    description: str = Field(..., description="Free text. Used for semantic key inference.")
    action: StepAction
    extract_fields: List[str] = Field(default_factory=list, alias="extractFields", description="Field paths to pull out of this step's response, in order.")
    is_auth_step: bool = Field(False, alias="isAuthStep", description="True when the response of this step carries an authentication token.")
    token_path: Optional[str] = Field(None, alias="tokenPath", description="Planner hint for where the token sits in the auth response.")
    notes: Optional[str] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class WorkflowPlan(BaseModel):
    """Envelope returned by the planner LLM."""
    workflow_name: Optional[str] = Field(None, alias="workflowName")
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class RequestContext(BaseModel):
    """Target API and credentials for one run. Immutable for the run's duration."""
    base_url: str = Field("", description="Prepended to relative endpoints.")
    auth_token: Optional[str] = Field(None, description="Bare token or 'Bearer ...' string.")

    model_config = ConfigDict(frozen=True)


# --- Execution Models ---
class ResolvedRequest(BaseModel):
    """A fully substituted request, ready for the HTTP execution primitive."""
    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None

    def to_curl(self) -> str:
        """Renders the request as a curl command, used as the recorded request representation."""
        parts = ["curl", "-X", self.method, shlex.quote(self.url)]
        for name, value in self.headers.items():
            parts += ["-H", shlex.quote(f"{name}: {value}")]
        if self.body is not None:
            parts += ["-d", shlex.quote(json.dumps(self.body))]
        return " ".join(parts)


class HttpOutcome(BaseModel):
    """What the HTTP execution primitive returns for one request."""
    success: bool
    http_code: Optional[int] = None
    response: Any = None
    error: Optional[str] = None


class StepResult(BaseModel):
    step: int
    description: str
    success: bool
    status: StepStatus = "completed"
    request: Optional[ResolvedRequest] = None
    response: Any = None
    error: Optional[str] = None
    http_code: Optional[int] = Field(None, alias="httpCode")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode='after')
    def check_error_matches_success(self) -> 'StepResult':
        if self.success and self.error:
            raise ValueError(f"Step {self.step}: a successful result cannot carry an error.")
        if not self.success and not self.error:
            raise ValueError(f"Step {self.step}: a failed result must carry an error message.")
        self.status = "completed" if self.success else "failed"
        return self


class ErrorInfo(BaseModel):
    """Serializable description of why a run failed."""
    code: str
    message: str
    step: Optional[int] = None
    http_code: Optional[int] = None
    missing: Optional[Dict[int, List[str]]] = None


class ExecutionResult(BaseModel):
    success: bool
    status: RunStatus
    steps: List[StepResult] = Field(default_factory=list)
    extracted_data: Dict[str, Any] = Field(default_factory=dict, alias="extractedData")
    error: Optional[ErrorInfo] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def failed_step(self) -> Optional[StepResult]:
        return next((s for s in self.steps if not s.success), None)

    def raise_for_status(self) -> None:
        """Raises the StepExecutionError/AuthExpiredError recorded for a failed run."""
        if self.success:
            return
        if self.error is None:
            raise WorkflowEngineError("Workflow failed without error details.")
        raise error_from_info(self.error.model_dump(exclude_none=True))


class TokenExtractionResult(BaseModel):
    success: bool
    token: Optional[str] = None
    token_path: Optional[str] = Field(None, alias="tokenPath")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


# --- Progress Events ---
class WorkflowEvent(BaseModel):
    """A lifecycle notification produced by the workflow runner."""
    type: EventType
    step: Optional[int] = None
    description: Optional[str] = None
    total_steps: Optional[int] = None
    result: Optional[Union[StepResult, ExecutionResult]] = None
    http_code: Optional[int] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("workflow_complete", "workflow_error")

    def to_message(self) -> Dict[str, Any]:
        """Wire form sent to progress sinks (websocket frames)."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def planning(cls, message: str) -> 'WorkflowEvent':
        return cls(type="planning", message=message)

    @classmethod
    def step_start(cls, step: WorkflowStep, total_steps: int) -> 'WorkflowEvent':
        return cls(type="step_start", step=step.step_number, description=step.description, total_steps=total_steps)

    @classmethod
    def step_complete(cls, result: StepResult) -> 'WorkflowEvent':
        return cls(type="step_complete", step=result.step, result=result, http_code=result.http_code)

    @classmethod
    def step_failed(cls, result: StepResult) -> 'WorkflowEvent':
        return cls(type="step_failed", step=result.step, error=result.error, http_code=result.http_code, result=result)

    @classmethod
    def workflow_complete(cls, result: ExecutionResult) -> 'WorkflowEvent':
        return cls(type="workflow_complete", result=result)

    @classmethod
    def workflow_error(cls, error: str, result: Optional[ExecutionResult] = None) -> 'WorkflowEvent':
        return cls(type="workflow_error", error=error, result=result)
