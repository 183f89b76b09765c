"""
Session Router
Project-scoped session endpoints: open, query, index, compress, stats, clear, actions.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from coderelay.dependencies import SessionRegistry, get_session_registry
from coderelay.exceptions import ActionExecutionError, LLMClientError, LLMConnectionError, LLMError
from coderelay.schemas.action import Action
from coderelay.session import Session
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["session"])


class OpenSessionRequest(BaseModel):
    """Request body for opening a session."""

    project_root: str = Field(..., description="Project root directory")


class QueryRequest(OpenSessionRequest):
    """Request body for one query."""

    query: str = Field(..., min_length=1, description="User query")


class EditRequest(OpenSessionRequest):
    """Request body for the narrow edit track."""

    path: str = Field(..., description="File to edit")
    instruction: str = Field(..., min_length=1, description="What to change")


class ExecuteActionsRequest(OpenSessionRequest):
    """Request body for applying confirmed actions."""

    actions: List[Action] = Field(default_factory=list, description="Canonical actions, applied in order")


def _require(registry: SessionRegistry, project_root: str) -> Session:
    session = registry.get(project_root)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No open session for {project_root}")
    return session


def _model_error(exc: LLMError) -> HTTPException:
    if isinstance(exc, LLMConnectionError):
        detail = f"{exc} {exc.hint}".strip()
        return HTTPException(status_code=503, detail=detail)
    if isinstance(exc, LLMClientError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@router.post("/open")
async def open_session(request: OpenSessionRequest, registry: SessionRegistry = Depends(get_session_registry)):
    """Open (or return) the session for a project."""
    try:
        session = await registry.open(request.project_root)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return session.stats()


@router.get("")
async def list_sessions(registry: SessionRegistry = Depends(get_session_registry)):
    return {"sessions": registry.list_roots()}


@router.post("/query")
async def query(request: QueryRequest, registry: SessionRegistry = Depends(get_session_registry)):
    """Run one query and return the parsed response; actions are not applied."""
    session = _require(registry, request.project_root)
    try:
        result = await session.process_query(request.query)
    except LLMError as exc:
        logger.warning("Query failed for %s: %s", request.project_root, exc)
        raise _model_error(exc)
    return result.to_dict()


@router.post("/edit")
async def edit(request: EditRequest, registry: SessionRegistry = Depends(get_session_registry)):
    session = _require(registry, request.project_root)
    try:
        result = await session.process_edit(request.path, request.instruction)
    except LLMError as exc:
        raise _model_error(exc)
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return result.to_dict()


@router.post("/index")
async def rebuild_index(request: OpenSessionRequest, registry: SessionRegistry = Depends(get_session_registry)):
    session = _require(registry, request.project_root)
    count = await session.rebuild_index()
    return {"indexed": count, "structure": session.indexer.get_project_structure()}


@router.post("/compress")
async def compress(request: OpenSessionRequest, registry: SessionRegistry = Depends(get_session_registry)):
    session = _require(registry, request.project_root)
    compressed = await session.compress_history()
    return {"compressed": compressed, "ledger": session.ledger.get_stats().model_dump(mode="json")}


@router.get("/stats")
async def stats(
    project_root: str = Query(..., description="Project root directory"),
    registry: SessionRegistry = Depends(get_session_registry),
):
    return _require(registry, project_root).stats()


@router.post("/clear")
async def clear_history(request: OpenSessionRequest, registry: SessionRegistry = Depends(get_session_registry)):
    session = _require(registry, request.project_root)
    await session.clear_history()
    return {"success": True}


@router.post("/actions")
async def execute_actions(request: ExecuteActionsRequest, registry: SessionRegistry = Depends(get_session_registry)):
    """Apply actions fail-fast; a failure reports what was applied and skipped."""
    session = _require(registry, request.project_root)
    try:
        report = await session.execute_actions(request.actions)
    except ActionExecutionError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "failed": exc.failed.model_dump(mode="json") if exc.failed is not None else None,
                "applied": [a.model_dump(mode="json") for a in exc.applied],
                "skipped": [a.model_dump(mode="json") for a in exc.skipped],
            },
        )
    return {"success": True, "results": [r.message for r in report.results]}


@router.delete("")
async def close_session(
    project_root: str = Query(..., description="Project root directory"),
    registry: SessionRegistry = Depends(get_session_registry),
):
    closed = await registry.close(project_root)
    if not closed:
        raise HTTPException(status_code=404, detail=f"No open session for {project_root}")
    return {"success": True}
