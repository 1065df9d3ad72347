"""
Retriever Routes

Endpoints for opening retrieval sessions over an encoded video and running
semantic searches against them.
"""

import uuid
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, status

from .dependencies import get_registry
from .models import (
    OperationResult,
    RetrieverCreated,
    SearchRequest,
    SearchResponse,
    SessionList,
    StartRetrieverRequest,
)
from ..sessions.registry import SessionRegistry

router = APIRouter(prefix="/retrievers", tags=["retrievers"])

Registry = Annotated[SessionRegistry, Depends(get_registry)]


@router.post(
    "",
    response_model=RetrieverCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Open a retriever",
)
async def start_retriever(req: StartRetrieverRequest, registry: Registry) -> RetrieverCreated:
    retriever_id = req.retriever_id or uuid.uuid4().hex
    retriever = await registry.start_retriever(
        req.video_path,
        req.index_path,
        retriever_id=retriever_id,
    )
    return RetrieverCreated(retriever_id=retriever_id, info=retriever.info())


@router.get("", response_model=SessionList, summary="List retrievers")
async def list_retrievers(registry: Registry) -> SessionList:
    retrievers = registry.list_retrievers()
    return SessionList(sessions=retrievers, count=len(retrievers))


@router.get("/{retriever_id}", summary="Get retriever info")
async def get_retriever(retriever_id: str, registry: Registry) -> Dict[str, Any]:
    return registry.get_retriever(retriever_id).info()


@router.post("/{retriever_id}/search", response_model=SearchResponse, summary="Semantic search")
async def search(
    retriever_id: str,
    req: SearchRequest,
    registry: Registry,
) -> SearchResponse:
    retriever = registry.get_retriever(retriever_id)
    results = await retriever.search(req.query, req.top_k)
    return SearchResponse(results=results)


@router.delete("/{retriever_id}", response_model=OperationResult, summary="Stop a retriever")
async def stop_retriever(retriever_id: str, registry: Registry) -> OperationResult:
    await registry.stop_retriever(retriever_id)
    return OperationResult(status="deleted", details={"retriever_id": retriever_id})
