# errors.py
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

AUTH_EXPIRED_MESSAGE = (
    "Authentication token expired. Please log in again, or ask me to run the login step for you."
)


class WorkflowEngineError(Exception):
    """Base class for every error raised by the workflow engine."""
    code = "WORKFLOW_ENGINE_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_info(self) -> Dict[str, Any]:
        """Serializable form, used for ExecutionResult.error and HTTP responses."""
        return {"code": self.code, "message": self.message}


class PlanningError(WorkflowEngineError):
    """The planner returned an empty or malformed step list."""
    code = "PLANNING_ERROR"
    status_code = 422


class ValidationError(WorkflowEngineError):
    """A write step needs a foreign key that no earlier read step fetches."""
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, missing: Dict[int, List[str]], endpoints: Optional[Dict[int, str]] = None):
        self.missing = {step: list(fields) for step, fields in missing.items() if fields}
        self.endpoints = endpoints or {}
        parts = []
        for step_number in sorted(self.missing):
            endpoint = self.endpoints.get(step_number)
            target = f"step {step_number} ({endpoint})" if endpoint else f"step {step_number}"
            parts.append(f"{target} is missing: {', '.join(self.missing[step_number])}")
        super().__init__(
            "Workflow planning error: required foreign key fetching steps are missing. " + "; ".join(parts) + "."
        )

    def to_info(self) -> Dict[str, Any]:
        info = super().to_info()
        info["missing"] = self.missing
        return info


class StepExecutionError(WorkflowEngineError):
    """A step's HTTP call failed or returned a non-2xx status other than 401."""
    code = "STEP_EXECUTION_ERROR"
    status_code = 502

    def __init__(self, step: int, message: str, http_code: Optional[int] = None):
        self.step = step
        self.http_code = http_code
        super().__init__(message)

    def to_info(self) -> Dict[str, Any]:
        info = super().to_info()
        info.update({"step": self.step, "http_code": self.http_code})
        return info


class AuthExpiredError(StepExecutionError):
    """A step returned HTTP 401. The caller should prompt for re-authentication."""
    code = "AUTH_EXPIRED"
    status_code = 401

    def __init__(self, step: int, message: str = AUTH_EXPIRED_MESSAGE):
        super().__init__(step, message, http_code=401)


class ExtractionError(WorkflowEngineError):
    """A field or token could not be extracted from a successful response. Logged, never raised past a step."""
    code = "EXTRACTION_ERROR"
    status_code = 500

    def __init__(self, step: int, field: str, reason: str):
        self.step = step
        self.field = field
        super().__init__(f"Step {step}: could not extract '{field}': {reason}")


class OpenAPISpecError(WorkflowEngineError):
    """The OpenAPI/Swagger document could not be parsed or failed validation."""
    code = "SPEC_ERROR"
    status_code = 400


_ERRORS_BY_CODE = {
    cls.code: cls for cls in (PlanningError, OpenAPISpecError)
}


def error_from_info(info: Dict[str, Any]) -> WorkflowEngineError:
    """Rebuilds an exception from the dict produced by ``to_info``."""
    code = info.get("code")
    message = info.get("message") or "Workflow failed"
    if code == ValidationError.code:
        missing = {int(k): v for k, v in (info.get("missing") or {}).items()}
        return ValidationError(missing)
    if code == AuthExpiredError.code:
        return AuthExpiredError(info.get("step") or 0, message)
    if code == StepExecutionError.code:
        return StepExecutionError(info.get("step") or 0, message, info.get("http_code"))
    error_cls = _ERRORS_BY_CODE.get(code, WorkflowEngineError)
    if error_cls is WorkflowEngineError:
        logger.warning(f"Unknown error code '{code}' while rebuilding error; using base WorkflowEngineError.")
    return error_cls(message)
