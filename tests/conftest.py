# tests/conftest.py
"""
Common test fixtures for the workflow engine.
"""
import json
import os
import tempfile

# Keep the on-disk schema cache out of the working tree; utils reads this at import.
os.environ.setdefault("OPENAPI_CACHE_DIR", tempfile.mkdtemp(prefix="openapi_cache_"))

import httpx
import pytest

from api_executor import APIExecutor
from models import RequestContext, StepAction, WorkflowStep


class FakeAPI:
    """Routes requests by (METHOD, path) to canned responses and records what was sent."""
    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, json_body=None, status_code=200, text=None):
        self.routes[(method.upper(), path)] = (status_code, json_body, text)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append({
            "method": request.method,
            "path": request.url.path,
            "url": str(request.url),
            "headers": dict(request.headers),
            "body": body,
        })
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        status_code, json_body, text = route
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=json_body)

    @property
    def paths(self):
        return [f"{r['method']} {r['path']}" for r in self.requests]


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def http_client(fake_api):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler))


@pytest.fixture
def api_executor(http_client):
    return APIExecutor(client=http_client)


@pytest.fixture
def context():
    return RequestContext(base_url="https://api.example.com")


@pytest.fixture
def make_step():
    """Factory for WorkflowStep objects with sensible defaults."""
    def _make_step(step_number, description, endpoint, method="GET", body=None, extract_fields=None, **kwargs):
        return WorkflowStep(
            step_number=step_number,
            description=description,
            action=StepAction(method=method, endpoint=endpoint, body=body),
            extract_fields=extract_fields or [],
            **kwargs,
        )
    return _make_step


@pytest.fixture
def three_step_plan(make_step):
    """Fetch roles, fetch departments, create a user referencing both."""
    return [
        make_step(1, "Fetch roles", "/roles", extract_fields=["0.id"]),
        make_step(2, "Fetch departments", "/departments", extract_fields=["[name=Engineering].id"]),
        make_step(
            3, "Create a new user with role and department", "/users", method="POST",
            body={"name": "Ada", "role_id": "{{role_id}}", "department_id": "{{department_id}}"},
            extract_fields=["id"],
        ),
    ]


@pytest.fixture
def three_step_api(fake_api):
    fake_api.add("GET", "/roles", [{"id": 42, "name": "admin"}, {"id": 43, "name": "viewer"}])
    fake_api.add("GET", "/departments", {"data": [{"id": 7, "name": "Sales"}, {"id": 9, "name": "engineering"}]})
    fake_api.add("POST", "/users", {"id": 1001, "name": "Ada"}, status_code=201)
    return fake_api


SAMPLE_OPENAPI = {
    "openapi": "3.0.0",
    "info": {"title": "People API", "version": "1.0.0", "description": "Users and roles."},
    "servers": [{"url": "https://api.example.com"}],
    "paths": {
        "/roles": {
            "get": {"summary": "List roles", "responses": {"200": {"description": "Roles"}}},
        },
        "/users": {
            "post": {
                "summary": "Create user",
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/NewUser"}}},
                },
                "responses": {"201": {"description": "Created"}},
            },
        },
        "/users/{user_id}": {
            "get": {
                "summary": "Get user",
                "parameters": [{"name": "user_id", "in": "path", "required": True, "schema": {"type": "integer"}}],
                "responses": {"200": {"description": "User"}},
            },
        },
    },
    "components": {
        "schemas": {
            "NewUser": {
                "type": "object",
                "required": ["name", "role_id"],
                "properties": {
                    "name": {"type": "string", "description": "Full name"},
                    "role_id": {"type": "integer"},
                    "manager_id": {"type": "integer"},
                },
            },
        },
    },
}


@pytest.fixture
def sample_spec():
    return json.loads(json.dumps(SAMPLE_OPENAPI))


@pytest.fixture
def sample_spec_text():
    return json.dumps(SAMPLE_OPENAPI)
