# openapi_formatter.py
"""
Parsing, validation and planner-facing rendering of OpenAPI/Swagger documents.

The rendered text is what the planner LLM reads and what the foreign key
validator parses back, so the field line format
``- name: type (REQUIRED) [FOREIGN KEY]`` must stay stable.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import yaml
from openapi_spec_validator import (
    openapi_v2_spec_validator,
    openapi_v30_spec_validator,
    openapi_v31_spec_validator,
)
from openapi_spec_validator.validation.exceptions import OpenAPIValidationError
from pydantic import BaseModel

from errors import OpenAPISpecError
from utils import get_cache_key, load_cached_schema, save_schema_to_cache

logger = logging.getLogger(__name__)

HTTP_METHODS = {'get', 'post', 'put', 'delete', 'patch', 'options', 'head', 'trace'}
JSON_CONTENT_TYPES = ("application/json", "application/json; charset=utf-8")
MAX_REF_DEPTH = 10


class LoadedSpec(BaseModel):
    title: Optional[str] = None
    base_url: Optional[str] = None
    description: str


def parse_spec(spec_text: str) -> Dict[str, Any]:
    """JSON first, then YAML. Raises OpenAPISpecError when neither yields a mapping."""
    if not spec_text or not spec_text.strip():
        raise OpenAPISpecError("No OpenAPI specification text provided.")
    try:
        parsed = json.loads(spec_text)
    except json.JSONDecodeError:
        try:
            parsed = yaml.safe_load(spec_text)
        except yaml.YAMLError as yaml_e:
            raise OpenAPISpecError(f"Failed to parse Swagger document: invalid JSON or YAML format ({yaml_e})") from yaml_e
    if not isinstance(parsed, dict):
        raise OpenAPISpecError(f"Parsed content is not a valid dictionary structure (got {type(parsed).__name__}).")
    return parsed


def validate_spec(spec: Dict[str, Any]) -> None:
    """Validates against the openapi-spec-validator for the document's version."""
    version = str(spec.get('openapi', spec.get('swagger', '')))
    if version.startswith('2.'):
        validator = openapi_v2_spec_validator
    elif version.startswith('3.1'):
        validator = openapi_v31_spec_validator
    else:
        if not version.startswith('3.0'):
            logger.warning(f"Unknown or unsupported OpenAPI version string: '{version}'. Validating with the v3.0 validator.")
        validator = openapi_v30_spec_validator

    try:
        validator.validate(spec)
    except OpenAPIValidationError as val_e:
        error_detail = str(getattr(val_e, 'message', val_e))
        logger.error(f"OpenAPI Validation failed: {error_detail}")
        raise OpenAPISpecError(f"OpenAPI specification is invalid: {error_detail[:500]}") from val_e
    except Exception as e_general:
        logger.error(f"Unexpected error during OpenAPI validation: {e_general}", exc_info=True)
        raise OpenAPISpecError(f"Error during OpenAPI validation: {str(e_general)[:200]}") from e_general
    logger.info(f"OpenAPI document (version '{version}') validated.")


def extract_base_url(spec: Dict[str, Any]) -> Optional[str]:
    servers = spec.get('servers')
    if isinstance(servers, list) and servers and isinstance(servers[0], dict) and servers[0].get('url'):
        return servers[0]['url']
    if spec.get('host'):
        schemes = spec.get('schemes') or ['https']
        return f"{schemes[0]}://{spec['host']}{spec.get('basePath', '')}"
    return None


def resolve_ref(ref: str, spec: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Local refs only: '#/components/schemas/Name' or '#/definitions/Name'."""
    if not ref.startswith('#/'):
        logger.debug(f"Skipping non-local $ref '{ref}'")
        return None
    current: Any = spec
    for part in ref[2:].split('/'):
        part = part.replace('~1', '/').replace('~0', '~')
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current if isinstance(current, dict) else None


def _deref(schema: Any, spec: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    depth = 0
    while isinstance(schema, dict) and '$ref' in schema and depth < MAX_REF_DEPTH:
        schema = resolve_ref(schema['$ref'], spec)
        depth += 1
    return schema if isinstance(schema, dict) else None


def _request_body_schema(operation: Dict[str, Any], spec: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    request_body = _deref(operation.get('requestBody'), spec)
    if request_body:
        content = request_body.get('content') or {}
        for content_type in JSON_CONTENT_TYPES:
            media = content.get(content_type)
            if isinstance(media, dict):
                return _deref(media.get('schema'), spec)
        return None
    # Swagger 2 carries the body as an 'in: body' parameter.
    for param in operation.get('parameters') or []:
        if isinstance(param, dict) and param.get('in') == 'body':
            return _deref(param.get('schema'), spec)
    return None


def _parameter_type(param: Dict[str, Any]) -> str:
    if param.get('type'):
        return param['type']
    schema = param.get('schema')
    if isinstance(schema, dict):
        return schema.get('type') or 'string'
    return 'string'


def format_schema_fields(schema: Dict[str, Any], spec: Dict[str, Any], lines: List[str], indent: str, depth: int = 0) -> None:
    properties = schema.get('properties')
    if not isinstance(properties, dict) or depth > MAX_REF_DEPTH:
        return
    required = schema.get('required') or []

    for field_name, field_schema in properties.items():
        field = _deref(field_schema, spec)
        if field is None:
            continue
        field_type = field.get('type', 'unknown')
        field_desc = f"{field_name}: {field_type}"
        if field_name in required:
            field_desc += " (REQUIRED)"
        if field_name.endswith('_id'):
            field_desc += " [FOREIGN KEY]"
        lines.append(f"{indent}- {field_desc}")

        if field.get('description'):
            lines.append(f"{indent}  Description: {field['description']}")
        if field_type == 'object' and field.get('properties'):
            lines.append(f"{indent}  Nested fields:")
            format_schema_fields(field, spec, lines, indent + "    ", depth + 1)
        if field_type == 'array' and isinstance(field.get('items'), dict):
            items = _deref(field['items'], spec)
            if items and items.get('properties'):
                lines.append(f"{indent}  Array items:")
                format_schema_fields(items, spec, lines, indent + "    ", depth + 1)


def format_spec_for_planner(spec: Dict[str, Any], base_url_override: Optional[str] = None) -> str:
    """Renders endpoints, parameters, body fields and responses as compact markdown-ish text."""
    lines: List[str] = []
    info = spec.get('info') or {}
    if info:
        lines.append(f"# {info.get('title', 'API')} v{info.get('version', '')}")
        if info.get('description'):
            lines.append(info['description'])
        lines.append("")

    base_url = base_url_override or extract_base_url(spec)
    if base_url:
        lines.append(f"Base URL: {base_url}")
        lines.append("")

    lines.append("## Endpoints")
    lines.append("")

    for path, path_item in (spec.get('paths') or {}).items():
        if not isinstance(path_item, dict):
            logger.warning(f"Skipping non-dictionary path item at '{path}'")
            continue
        for method, operation in path_item.items():
            if method.lower() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            lines.append(f"### {method.upper()} {path}")
            if operation.get('summary'):
                lines.append(f"Summary: {operation['summary']}")
            if operation.get('description'):
                lines.append(f"Description: {operation['description']}")

            params = [p for p in (_deref(p, spec) for p in operation.get('parameters') or []) if p and p.get('in') != 'body']
            if params:
                lines.append("Parameters:")
                for param in params:
                    required = " (required)" if param.get('required') else ""
                    lines.append(f"  - {param.get('name')} ({param.get('in')}): {_parameter_type(param)}{required}")
                    if param.get('description'):
                        lines.append(f"    {param['description']}")

            body_schema = _request_body_schema(operation, spec)
            request_body = _deref(operation.get('requestBody'), spec) or {}
            if body_schema is not None or request_body:
                lines.append("Request Body:")
                if request_body.get('description'):
                    lines.append(f"  Description: {request_body['description']}")
                if request_body.get('required'):
                    lines.append("  Required: Yes")
                if body_schema:
                    lines.append("  Fields:")
                    format_schema_fields(body_schema, spec, lines, "    ")

            responses = operation.get('responses')
            if isinstance(responses, dict) and responses:
                lines.append("Responses:")
                for code, response in responses.items():
                    description = response.get('description') if isinstance(response, dict) else None
                    lines.append(f"  {code}: {description or 'No description'}")
            lines.append("")

    return "\n".join(lines)


def load_spec_description(spec_text: str, base_url_override: Optional[str] = None, validate: bool = True) -> LoadedSpec:
    """Parses, validates and formats a spec, caching the result on disk by content hash."""
    cache_key = get_cache_key(f"{spec_text}\n{base_url_override or ''}", namespace="planner_description")
    cached = load_cached_schema(cache_key)
    if isinstance(cached, dict):
        try:
            logger.info("Loaded formatted OpenAPI description from cache.")
            return LoadedSpec.model_validate(cached)
        except Exception as e:
            logger.warning(f"Ignoring unusable cache entry {cache_key}: {e}")

    spec = parse_spec(spec_text)
    if validate:
        validate_spec(spec)
    loaded = LoadedSpec(
        title=(spec.get('info') or {}).get('title'),
        base_url=base_url_override or extract_base_url(spec),
        description=format_spec_for_planner(spec, base_url_override),
    )
    save_schema_to_cache(cache_key, loaded.model_dump())
    return loaded
