from fastapi import APIRouter
from ..config import settings

router = APIRouter(tags=["health"])

@router.get("/health")
def health():
    return {
        "status": "ok",
        "store": settings.store_backend,
        "embedding_provider": settings.embedding_provider,
    }
