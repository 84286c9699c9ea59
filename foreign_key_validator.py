# foreign_key_validator.py
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from errors import ValidationError
from models import WorkflowStep
from semantic_names import singularize

logger = logging.getLogger(__name__)

WRITE_METHODS = ("POST",)
READ_METHODS = ("GET",)

ENDPOINT_HEADER_REGEX = re.compile(r"^###\s+([A-Z]+)\s+(\S+)\s*$", re.MULTILINE)
FIELDS_SECTION_REGEX = re.compile(r"Request Body:[\s\S]*?Fields:([\s\S]*?)(?=Responses:|^###|^## |\Z)", re.MULTILINE)
FIELD_LINE_REGEX = re.compile(r"-\s+(\w+):\s+(\w+)(\s+\(REQUIRED\))?.*?(\[FOREIGN KEY\])?\s*$", re.IGNORECASE)
PATH_PARAM_REGEX = re.compile(r"\{\{[^{}]*\}\}|\{[^{}]*\}")


class SchemaField(BaseModel):
    name: str
    type: str = "unknown"
    required: bool = False
    foreign_key: bool = False


class EndpointSchema(BaseModel):
    """Request body fields of one operation, as far as foreign key checks need them."""
    method: str
    path: str
    fields: List[SchemaField] = Field(default_factory=list)

    @property
    def required_foreign_keys(self) -> List[str]:
        return [f.name for f in self.fields if f.required and f.foreign_key and f.name.endswith("_id")]


SchemaDescription = Union[str, Iterable[EndpointSchema]]


def normalize_endpoint(endpoint: str) -> str:
    """'/users/{{user_id}}/roles?x=1' and '/users/{id}/roles' both become '/users/{}/roles'."""
    path = urlparse(endpoint).path if endpoint.startswith(("http://", "https://")) else endpoint.split("?", 1)[0]
    path = PATH_PARAM_REGEX.sub("{}", path.strip().lower())
    return "/" + path.strip("/")


def parse_schema_description(text: str) -> List[EndpointSchema]:
    """Reads endpoint blocks back out of the text produced by openapi_formatter.format_spec_for_planner."""
    endpoints: List[EndpointSchema] = []
    headers = list(ENDPOINT_HEADER_REGEX.finditer(text or ""))
    for index, header in enumerate(headers):
        block_end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        block = text[header.end():block_end]
        fields: List[SchemaField] = []
        fields_match = FIELDS_SECTION_REGEX.search(block)
        if fields_match:
            top_indent: Optional[int] = None
            for line in fields_match.group(1).splitlines():
                field_match = FIELD_LINE_REGEX.search(line)
                if not field_match:
                    continue
                # Deeper lines sit under "Nested fields:" or "Array items:" and are not body fields.
                indent = len(line) - len(line.lstrip())
                if top_indent is None:
                    top_indent = indent
                if indent > top_indent:
                    continue
                name, field_type, required, foreign_key = field_match.groups()
                fields.append(SchemaField(name=name, type=field_type, required=bool(required), foreign_key=bool(foreign_key)))
        endpoints.append(EndpointSchema(method=header.group(1).upper(), path=header.group(2), fields=fields))
    return endpoints


def _as_endpoints(schema: SchemaDescription) -> List[EndpointSchema]:
    if isinstance(schema, str):
        return parse_schema_description(schema)
    return list(schema)


def find_endpoint_schema(endpoints: Sequence[EndpointSchema], method: str, endpoint: str) -> Optional[EndpointSchema]:
    wanted = normalize_endpoint(endpoint)
    candidates = [e for e in endpoints if e.method.upper() == method.upper()]
    for schema in candidates:
        if normalize_endpoint(schema.path) == wanted:
            return schema
    # Step endpoints may carry a base path the schema omits.
    for schema in candidates:
        if wanted.endswith(normalize_endpoint(schema.path)) and normalize_endpoint(schema.path) != "/":
            return schema
    return None


def resource_variants(foreign_key: str) -> List[str]:
    """'payment_method_id' -> 'payment method', 'payment-method', 'paymentmethod', ... plus plural forms."""
    words = re.sub(r"_id$", "", foreign_key.lower()).split("_")
    words = [w for w in words if w]
    if not words:
        return []
    singular = words[:-1] + [singularize(words[-1])]
    last = singular[-1]
    plural_last = last[:-1] + "ies" if last.endswith("y") and len(last) > 1 and last[-2] not in "aeiou" else last + "s"
    plural = singular[:-1] + [plural_last]
    variants: List[str] = []
    for form in (words, singular, plural):
        for separator in (" ", "-", "_", ""):
            candidate = separator.join(form)
            if candidate not in variants:
                variants.append(candidate)
    return variants


def step_fetches_resource(step: WorkflowStep, foreign_key: str) -> bool:
    if step.action.method.upper() not in READ_METHODS:
        return False
    description = step.description.lower()
    endpoint = step.action.endpoint.lower()
    return any(variant in description or variant in endpoint for variant in resource_variants(foreign_key))


def find_missing_foreign_keys(steps: Sequence[WorkflowStep], schema: SchemaDescription) -> Dict[int, List[str]]:
    """
    For every write step, lists the required foreign keys that no earlier GET
    step fetches. Steps whose endpoint is not in the schema are not checked.
    """
    endpoints = _as_endpoints(schema)
    missing: Dict[int, List[str]] = {}
    for step in steps:
        if step.action.method.upper() not in WRITE_METHODS:
            continue
        endpoint_schema = find_endpoint_schema(endpoints, step.action.method, step.action.endpoint)
        if endpoint_schema is None:
            logger.debug(f"Step {step.step_number}: no schema for {step.action.method} {step.action.endpoint}; skipping foreign key check.")
            continue
        earlier = [s for s in steps if s.step_number < step.step_number]
        step_missing = [
            fk for fk in endpoint_schema.required_foreign_keys
            if not any(step_fetches_resource(s, fk) for s in earlier)
        ]
        if step_missing:
            logger.warning(f"Step {step.step_number} ({step.action.endpoint}) needs {step_missing} but no earlier step fetches them.")
            missing[step.step_number] = step_missing
    return missing


def ensure_plan_valid(steps: Sequence[WorkflowStep], schema: SchemaDescription) -> None:
    """Raises ValidationError when a write step references a resource it never fetched."""
    missing = find_missing_foreign_keys(steps, schema)
    if missing:
        endpoints = {s.step_number: s.action.endpoint for s in steps if s.step_number in missing}
        raise ValidationError(missing, endpoints)
