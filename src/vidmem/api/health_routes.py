from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_registry
from ..config import settings
from ..sessions.registry import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
def health(registry: Annotated[SessionRegistry, Depends(get_registry)]):
    return {
        "status": "ok",
        "codec": settings.codec,
        "encoders": registry.count_encoders(),
        "retrievers": registry.count_retrievers(),
    }
