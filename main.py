# main.py
import logging
import os
import sys
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.websockets import WebSocketState

from api_executor import APIExecutor
from errors import WorkflowEngineError
from llm_config import initialize_planner_llm
from models import ExecutionResult, RequestContext, WorkflowEvent, WorkflowStep
from openapi_formatter import load_spec_description
from planner import WorkflowPlanner
from workflow_service import WorkflowService, format_execution_summary

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    stream=sys.stdout,
    format='%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = os.getenv("DEFAULT_API_BASE_URL", "")

app = FastAPI(title="OpenAPI Workflow Engine")

api_executor_instance: Optional[APIExecutor] = None
workflow_service: Optional[WorkflowService] = None


class SchemaSource(BaseModel):
    spec_text: Optional[str] = Field(None, description="Raw OpenAPI/Swagger document (JSON or YAML).")
    schema_description: Optional[str] = Field(None, description="Already formatted planner description.")
    base_url: Optional[str] = None


class PlanRequest(SchemaSource):
    goal: str
    has_auth: bool = False


class ExecuteRequest(SchemaSource):
    steps: List[WorkflowStep]
    auth_token: Optional[str] = None


class WorkflowSocketRequest(SchemaSource):
    goal: Optional[str] = None
    steps: Optional[List[WorkflowStep]] = None
    auth_token: Optional[str] = None


def resolve_schema(source: SchemaSource) -> Dict[str, Optional[str]]:
    """Returns the planner description and base URL for a request, loading the spec when given."""
    description = source.schema_description
    base_url = source.base_url
    if source.spec_text:
        loaded = load_spec_description(source.spec_text, source.base_url)
        description = description or loaded.description
        base_url = base_url or loaded.base_url
    return {"description": description, "base_url": base_url or DEFAULT_API_BASE_URL}


def get_service() -> WorkflowService:
    if workflow_service is None:
        raise HTTPException(status_code=503, detail="Workflow service not initialized.")
    return workflow_service


@app.on_event("startup")
async def startup_event():
    global api_executor_instance, workflow_service
    logger.info("FastAPI startup: Initializing planner LLM and API Executor...")
    api_executor_instance = APIExecutor()
    planner_llm = initialize_planner_llm()
    planner = WorkflowPlanner(planner_llm) if planner_llm is not None else None
    workflow_service = WorkflowService(api_executor_instance, planner)
    logger.info(f"Workflow service ready. Planner available: {planner is not None}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI shutdown initiated.")
    if api_executor_instance is not None:
        try:
            await api_executor_instance.close()
        except Exception as e:
            logger.error(f"Error closing APIExecutor client: {e}", exc_info=True)

    from utils import SCHEMA_CACHE
    if SCHEMA_CACHE is not None:
        try:
            SCHEMA_CACHE.close()
            logger.info("Schema cache closed.")
        except Exception as e:
            logger.error(f"Error closing schema cache: {e}")
    logger.info("FastAPI shutdown complete.")


@app.exception_handler(WorkflowEngineError)
async def workflow_engine_error_handler(request, exc: WorkflowEngineError):
    logger.warning(f"Request to {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_info()})


def execution_payload(result: ExecutionResult) -> Dict[str, Any]:
    payload = result.model_dump(mode="json", by_alias=True)
    payload["summary"] = format_execution_summary(result)
    return payload


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "planner_available": workflow_service is not None and workflow_service.planner is not None,
    }


@app.post("/workflows/plan")
async def plan_workflow(body: PlanRequest):
    service = get_service()
    if service.planner is None:
        raise HTTPException(status_code=503, detail="Workflow planner is not configured (set GOOGLE_API_KEY).")
    schema = resolve_schema(body)
    steps = await service.plan(schema["description"] or "", body.goal, body.has_auth)
    return {
        "steps": [s.model_dump(mode="json", by_alias=True) for s in steps],
        "base_url": schema["base_url"],
    }


@app.post("/workflows/execute")
async def execute_workflow(body: ExecuteRequest):
    service = get_service()
    schema = resolve_schema(body)
    context = RequestContext(base_url=schema["base_url"] or "", auth_token=body.auth_token)
    result = await service.execute(body.steps, context, schema_description=schema["description"])
    return execution_payload(result)


async def send_ws_message(websocket: WebSocket, msg_type: str, content: Any, session_id: str):
    try:
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.send_json({"type": msg_type, "content": content})
    except WebSocketDisconnect:
        logger.warning(f"[{session_id}] WS TX fail (Type: {msg_type}): Disconnected.")
    except Exception as e:
        logger.error(f"[{session_id}] WS TX error (Type: {msg_type}): {e}", exc_info=False)


@app.websocket("/ws/workflow")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    session_id = str(uuid.uuid4())
    logger.info(f"WebSocket connection accepted: {session_id}")

    if workflow_service is None:
        await send_ws_message(websocket, "error", "Workflow service not initialized.", session_id)
        await websocket.close(code=1011)
        return

    await send_ws_message(websocket, "info", {"session_id": session_id, "message": "Connection established."}, session_id)

    async def event_sink(event: WorkflowEvent):
        # Raises on a closed socket so the runner stops after the current step.
        if websocket.client_state != WebSocketState.CONNECTED:
            raise WebSocketDisconnect(code=1006)
        await websocket.send_json({"type": event.type, "content": event.to_message()})

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                request = WorkflowSocketRequest.model_validate(raw)
            except PydanticValidationError as ve:
                await send_ws_message(websocket, "error", f"Invalid request: {ve.errors()[0].get('msg', str(ve))}", session_id)
                continue
            if not request.steps and not request.goal:
                await send_ws_message(websocket, "error", "Provide either 'goal' or 'steps'.", session_id)
                continue

            logger.info(f"[{session_id}] WS RX: goal={str(request.goal)[:100]} steps={len(request.steps or [])}")
            try:
                schema = resolve_schema(request)
            except WorkflowEngineError as e:
                await send_ws_message(websocket, "workflow_error", e.to_info(), session_id)
                continue

            context = RequestContext(base_url=schema["base_url"] or "", auth_token=request.auth_token)
            result = await workflow_service.stream(
                event_sink,
                context,
                steps=request.steps or None,
                goal=request.goal,
                schema_description=schema["description"],
                session_id=session_id,
            )
            await send_ws_message(websocket, "summary", format_execution_summary(result), session_id)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {session_id}.")
    except Exception as e_outer_loop:
        logger.critical(f"[{session_id}] Unhandled error in WebSocket main loop: {e_outer_loop}", exc_info=True)
    finally:
        logger.info(f"[{session_id}] Closing WebSocket connection.")
