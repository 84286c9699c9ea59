# tests/test_openapi_formatter.py
"""Tests for OpenAPI parsing, validation and planner formatting."""
import json

import pytest
import yaml

from errors import OpenAPISpecError
from openapi_formatter import (
    extract_base_url,
    format_spec_for_planner,
    load_spec_description,
    parse_spec,
    resolve_ref,
    validate_spec,
)


def test_parse_json_and_yaml(sample_spec, sample_spec_text):
    assert parse_spec(sample_spec_text) == sample_spec
    assert parse_spec(yaml.safe_dump(sample_spec)) == sample_spec


@pytest.mark.parametrize("text", ["", "   ", "just a string", "- a\n- b", "key: [unclosed"])
def test_parse_rejects_non_mappings(text):
    with pytest.raises(OpenAPISpecError):
        parse_spec(text)


def test_validate_accepts_valid_spec(sample_spec):
    validate_spec(sample_spec)


def test_validate_rejects_invalid_spec(sample_spec):
    del sample_spec["info"]
    with pytest.raises(OpenAPISpecError) as exc_info:
        validate_spec(sample_spec)
    assert exc_info.value.code == "SPEC_ERROR"
    assert exc_info.value.status_code == 400


def test_extract_base_url():
    assert extract_base_url({"servers": [{"url": "https://a.io/v1"}]}) == "https://a.io/v1"
    assert extract_base_url({"host": "b.io", "basePath": "/api", "schemes": ["http"]}) == "http://b.io/api"
    assert extract_base_url({"host": "b.io"}) == "https://b.io"
    assert extract_base_url({}) is None


def test_resolve_ref(sample_spec):
    assert resolve_ref("#/components/schemas/NewUser", sample_spec)["required"] == ["name", "role_id"]
    assert resolve_ref("#/components/schemas/Nope", sample_spec) is None
    assert resolve_ref("other.yaml#/Thing", sample_spec) is None


class TestFormatting:
    def test_header_and_base_url(self, sample_spec):
        text = format_spec_for_planner(sample_spec)
        assert text.startswith("# People API v1.0.0\nUsers and roles.")
        assert "Base URL: https://api.example.com" in text
        assert "## Endpoints" in text

    def test_base_url_override(self, sample_spec):
        text = format_spec_for_planner(sample_spec, "http://localhost:8000")
        assert "Base URL: http://localhost:8000" in text

    def test_operations_and_parameters(self, sample_spec):
        text = format_spec_for_planner(sample_spec)
        assert "### GET /roles\nSummary: List roles" in text
        assert "  - user_id (path): integer (required)" in text
        assert "  200: Roles" in text

    def test_request_body_fields_are_tagged(self, sample_spec):
        text = format_spec_for_planner(sample_spec)
        assert "Request Body:\n  Required: Yes\n  Fields:" in text
        assert "    - name: string (REQUIRED)" in text
        assert "      Description: Full name" in text
        assert "    - role_id: integer (REQUIRED) [FOREIGN KEY]" in text
        assert "    - manager_id: integer [FOREIGN KEY]" in text

    def test_swagger2_body_parameter(self):
        spec = {
            "swagger": "2.0",
            "info": {"title": "Old", "version": "1"},
            "host": "old.io",
            "paths": {"/things": {"post": {
                "parameters": [{"in": "body", "name": "body", "schema": {"$ref": "#/definitions/Thing"}}],
                "responses": {"200": {"description": "ok"}},
            }}},
            "definitions": {"Thing": {"required": ["owner_id"], "properties": {"owner_id": {"type": "string"}}}},
        }
        text = format_spec_for_planner(spec)
        assert "Base URL: https://old.io" in text
        assert "    - owner_id: string (REQUIRED) [FOREIGN KEY]" in text
        assert "Parameters:" not in text

    def test_nested_and_array_fields(self):
        spec = {"paths": {"/orders": {"post": {
            "requestBody": {"content": {"application/json": {"schema": {"properties": {
                "address": {"type": "object", "properties": {"city": {"type": "string"}}},
                "lines": {"type": "array", "items": {"properties": {"product_id": {"type": "integer"}}}},
            }}}}},
        }}}}
        text = format_spec_for_planner(spec)
        assert "    - address: object\n      Nested fields:\n        - city: string" in text
        assert "      Array items:\n        - product_id: integer [FOREIGN KEY]" in text


def test_load_spec_description_caches_by_content(sample_spec_text):
    first = load_spec_description(sample_spec_text)
    assert first.title == "People API"
    assert first.base_url == "https://api.example.com"
    assert "### POST /users" in first.description

    with pytest.MonkeyPatch.context() as mp:
        import openapi_formatter
        mp.setattr(openapi_formatter, "parse_spec", lambda text: pytest.fail("cache miss"))
        second = load_spec_description(sample_spec_text)
    assert second == first


def test_load_spec_description_rejects_invalid(sample_spec):
    del sample_spec["paths"]
    sample_spec["info"]["title"] = "Broken API"
    with pytest.raises(OpenAPISpecError):
        load_spec_description(json.dumps(sample_spec))
