# step_runner.py
import logging
import re
from typing import Any, Dict, Optional, Sequence

from api_executor import HttpExecutor
from errors import ExtractionError
from field_extractor import extract_field, is_missing
from models import RequestContext, ResolvedRequest, StepResult, WorkflowStep
from placeholder_resolver import PlaceholderResolver, is_id_field, step_key
from semantic_names import infer_semantic_key
from token_extractor import TokenExtractor, token_extractor as default_token_extractor

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "auth_token"
AUTH_EXPIRED_STEP_ERROR = "Authentication token expired"

# Tried in order when an '*_id' extraction field is not present in the response.
ID_FALLBACK_PATHS = ("0.id", "id", "0.uuid", "uuid")

PLAIN_ID_NAME_REGEX = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:_[A-Za-z0-9]+)*_id$")


def semantic_key_for(step: WorkflowStep, field: str) -> Optional[str]:
    """Key under which a field is also stored besides step{N}_{field}, or None."""
    if PLAIN_ID_NAME_REGEX.match(field):
        return field
    if is_id_field(field):
        return infer_semantic_key(step.description)
    return None


class StepRunner:
    """Runs one step: build the request, call the API, extract fields and tokens into the store."""

    def __init__(self, http_executor: HttpExecutor, token_extractor: TokenExtractor = default_token_extractor):
        self.http_executor = http_executor
        self.token_extractor = token_extractor
        self.last_token_path: Optional[str] = None

    async def run_step(
        self,
        step: WorkflowStep,
        prior_steps: Sequence[WorkflowStep],
        store: Dict[str, Any],
        context: RequestContext,
        auth_token: Optional[str] = None,
    ) -> StepResult:
        request: Optional[ResolvedRequest] = None
        try:
            request = PlaceholderResolver(store).build_request(step, prior_steps, context, auth_token)
            logger.debug(f"Step {step.step_number} request: {request.to_curl()}")

            outcome = await self.http_executor.execute(request)
            if not outcome.success:
                if outcome.http_code == 401:
                    error = AUTH_EXPIRED_STEP_ERROR
                elif outcome.http_code is not None:
                    error = f"HTTP {outcome.http_code}: Request failed"
                else:
                    error = outcome.error or "Request failed"
                logger.warning(f"Step {step.step_number} failed: {error}")
                return StepResult(
                    step=step.step_number, description=step.description, success=False,
                    request=request, response=outcome.response, error=error, http_code=outcome.http_code,
                )

            self._extract_fields(step, outcome.response, store)
            if step.is_auth_step:
                self._extract_token(step, outcome.response, store)

            return StepResult(
                step=step.step_number, description=step.description, success=True,
                request=request, response=outcome.response, http_code=outcome.http_code,
            )
        except Exception as e:
            logger.error(f"Unexpected error while running step {step.step_number}: {e}", exc_info=True)
            return StepResult(
                step=step.step_number, description=step.description, success=False,
                request=request, error=f"Unexpected error: {e}",
            )

    def _extract_fields(self, step: WorkflowStep, response: Any, store: Dict[str, Any]) -> None:
        for field in step.extract_fields:
            value = extract_field(response, field)
            if is_missing(value) and field.endswith("_id"):
                for fallback in ID_FALLBACK_PATHS:
                    value = extract_field(response, fallback)
                    if not is_missing(value):
                        logger.debug(f"Step {step.step_number}: '{field}' not in response, using fallback path '{fallback}'")
                        break
            if is_missing(value):
                logger.warning(str(ExtractionError(step.step_number, field, "path not found in response")))
                continue

            store[step_key(step.step_number, field)] = value
            semantic = semantic_key_for(step, field)
            if semantic:
                if semantic in store:
                    logger.debug(f"Semantic key '{semantic}' overwritten by step {step.step_number}")
                store[semantic] = value
            logger.info(f"Step {step.step_number}: extracted '{field}'" + (f" (as '{semantic}')" if semantic else ""))

    def _extract_token(self, step: WorkflowStep, response: Any, store: Dict[str, Any]) -> None:
        result = self.token_extractor.extract_token(response, step.token_path)
        if not result.success:
            logger.warning(str(ExtractionError(step.step_number, step.token_path or AUTH_TOKEN_KEY, result.error or "no token")))
            return
        store[AUTH_TOKEN_KEY] = result.token
        self.last_token_path = result.token_path
        logger.info(f"Step {step.step_number}: authentication token extracted from '{result.token_path}'")
