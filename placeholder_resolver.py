# placeholder_resolver.py
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from field_extractor import MISSING, is_missing, normalize_path
from models import RequestContext, ResolvedRequest, WorkflowStep
from semantic_names import field_matches_description, infer_semantic_key
from token_extractor import build_auth_header

logger = logging.getLogger(__name__)

PLACEHOLDER_REGEX = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
FULL_PLACEHOLDER_REGEX = re.compile(r"^\{\{\s*([^{}]+?)\s*\}\}$")

# Extraction paths whose value is "the id of the fetched resource".
ID_FIELD_NAMES = ("id", "uuid")


def step_key(step_number: int, field: str) -> str:
    """Step-scoped storage key. Unique per extraction; never overwritten."""
    return f"step{step_number}_{field}"


def is_id_field(field: str) -> bool:
    """'id', '0.id', '[0].id', 'data.0.uuid', '[status=active].id'."""
    last = normalize_path(field).split(".")[-1] if field else ""
    return last in ID_FIELD_NAMES


def find_placeholders(text: str) -> List[str]:
    return PLACEHOLDER_REGEX.findall(text or "")


def step_id_value(store: Dict[str, Any], step: WorkflowStep) -> Any:
    """The id a prior step produced: 'step{N}_id' first, then any id-shaped extraction of that step."""
    direct = step_key(step.step_number, "id")
    if direct in store:
        return store[direct]
    for field in step.extract_fields:
        key = step_key(step.step_number, field)
        if is_id_field(field) and key in store:
            return store[key]
    return MISSING


def build_field_to_step_map(current_step: WorkflowStep, prior_steps: Sequence[WorkflowStep]) -> Dict[str, int]:
    """
    Maps field names to the prior step that produced them.

    Generic id extractions ('id', '0.id') are filed under the step's inferred
    semantic key ("Fetch roles" -> 'role_id'); named extractions under their
    own name. Later steps win on collisions.
    """
    field_to_step: Dict[str, int] = {}
    for step in sorted(prior_steps, key=lambda s: s.step_number):
        if step.step_number >= current_step.step_number:
            continue
        for field in step.extract_fields:
            if is_id_field(field):
                semantic = infer_semantic_key(step.description)
                if semantic:
                    field_to_step[semantic] = step.step_number
            field_to_step[field] = step.step_number
    return field_to_step


class PlaceholderResolver:
    """Turns a step's endpoint and body templates into a concrete request, just before the step runs."""

    def __init__(self, store: Dict[str, Any]):
        self.store = store

    # --- Endpoint ---
    def resolve_endpoint(self, endpoint: str) -> str:
        """Endpoint markers are resolved by exact key lookup only. Unresolved markers are kept verbatim."""
        def _substitute(match: re.Match) -> str:
            name = match.group(1)
            if name in self.store:
                return str(self.store[name])
            logger.warning(f"Could not resolve endpoint placeholder {{{{{name}}}}}. Available keys: {list(self.store.keys())}")
            return match.group(0)

        return PLACEHOLDER_REGEX.sub(_substitute, endpoint or "")

    # --- Body ---
    def resolve_body(self, body: Optional[Dict[str, Any]], current_step: WorkflowStep, prior_steps: Sequence[WorkflowStep]) -> Optional[Dict[str, Any]]:
        if not body:
            return body
        prior = [s for s in prior_steps if s.step_number < current_step.step_number]
        field_to_step = build_field_to_step_map(current_step, prior)
        return self._resolve_value(body, None, prior, field_to_step)

    def _resolve_value(self, value: Any, field_name: Optional[str], prior: List[WorkflowStep], field_to_step: Dict[str, int]) -> Any:
        if isinstance(value, dict):
            return {k: self._resolve_value(v, k, prior, field_to_step) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v, field_name, prior, field_to_step) for v in value]
        if not isinstance(value, str) or "{{" not in value:
            return value

        full = FULL_PLACEHOLDER_REGEX.match(value)
        if full:
            resolved = self.resolve_placeholder(full.group(1), field_name or full.group(1), prior, field_to_step)
            if is_missing(resolved):
                logger.warning(f"Could not resolve body placeholder {value} in field '{field_name}'. Leaving it in place.")
                return value
            return resolved

        def _substitute(match: re.Match) -> str:
            resolved = self.resolve_placeholder(match.group(1), field_name or match.group(1), prior, field_to_step)
            if is_missing(resolved):
                logger.warning(f"Could not resolve embedded placeholder {match.group(0)} in field '{field_name}'.")
                return match.group(0)
            return str(resolved)

        return PLACEHOLDER_REGEX.sub(_substitute, value)

    def resolve_placeholder(self, placeholder: str, field_name: str, prior: List[WorkflowStep], field_to_step: Dict[str, int]) -> Any:
        """
        Resolution strategies, in order:
          1. direct lookup of the placeholder name
          2. field-to-step map -> step{N}_{placeholder}, else that step's id
          3. for *_id fields, a prior step whose description mentions the resource
        """
        if placeholder in self.store:
            return self.store[placeholder]

        steps_by_number = {s.step_number: s for s in prior}
        for candidate in (placeholder, field_name):
            step_number = field_to_step.get(candidate)
            if step_number is None:
                continue
            scoped = step_key(step_number, placeholder)
            if scoped in self.store:
                logger.debug(f"Placeholder '{placeholder}' resolved via field map from {scoped}")
                return self.store[scoped]
            if step_number in steps_by_number:
                value = step_id_value(self.store, steps_by_number[step_number])
                if not is_missing(value):
                    logger.debug(f"Placeholder '{placeholder}' resolved via field map to the id of step {step_number}")
                    return value

        for candidate in (field_name, placeholder):
            if not candidate.endswith("_id"):
                continue
            for step in prior:
                if not field_matches_description(candidate, step.description):
                    continue
                value = step_id_value(self.store, step)
                if not is_missing(value):
                    logger.debug(f"Placeholder '{placeholder}' matched step {step.step_number} ('{step.description}') by resource name")
                    return value

        return MISSING

    # --- Request ---
    def build_request(self, step: WorkflowStep, prior_steps: Sequence[WorkflowStep], context: RequestContext, auth_token: Optional[str] = None) -> ResolvedRequest:
        endpoint = self.resolve_endpoint(step.action.endpoint)
        if endpoint.startswith(("http://", "https://")):
            url = endpoint
        else:
            url = context.base_url.rstrip('/') + '/' + endpoint.lstrip('/') if context.base_url else endpoint

        headers = {"Content-Type": "application/json"}
        token = auth_token or context.auth_token
        if token:
            headers["Authorization"] = build_auth_header(token)

        body = None
        if step.action.body:
            body = self.resolve_body(step.action.body, step, prior_steps)

        request = ResolvedRequest(method=step.action.method, url=url, headers=headers, body=body)
        unresolved = find_placeholders(url) + find_placeholders(str(body) if body else "")
        if unresolved:
            logger.warning(f"Step {step.step_number} request still contains unresolved placeholders: {unresolved}")
        return request
