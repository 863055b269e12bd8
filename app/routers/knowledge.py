"""Knowledge base search and rebuild routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..bots.repository import BotConfigNotFoundError, resolve_bot_config
from ..core.rate_limit import SEARCH_RATE_LIMIT, limiter
from ..core.runtime import ChatRuntime, get_runtime
from ..escalation.directory import StaffMember
from ..knowledge import schemas as knowledge_schemas
from ..security.auth import require_role

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])

AgentDep = Annotated[StaffMember, Depends(require_role("agent"))]
AdminDep = Annotated[StaffMember, Depends(require_role("admin"))]
RuntimeDep = Annotated[ChatRuntime, Depends(get_runtime)]


@router.post("/search", response_model=knowledge_schemas.SearchResponse)
@limiter.limit(SEARCH_RATE_LIMIT)
async def search_knowledge(
    request: Request,
    payload: knowledge_schemas.SearchRequest,
    runtime: RuntimeDep,
    staff: AgentDep,
) -> knowledge_schemas.SearchResponse:
    results = await runtime.retrieval.search(
        payload.query,
        bot_config_id=payload.bot_config_id,
        limit=payload.limit,
        threshold=payload.threshold,
    )
    return knowledge_schemas.SearchResponse(query=payload.query, results=results)


@router.post("/rebuild/{bot_config_id}", response_model=knowledge_schemas.RebuildSummary)
async def rebuild_knowledge(
    bot_config_id: UUID,
    runtime: RuntimeDep,
    staff: AdminDep,
) -> knowledge_schemas.RebuildSummary:
    try:
        resolve_bot_config(runtime.bots, bot_config_id)
        return await runtime.rebuilder.rebuild(bot_config_id)
    except BotConfigNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
