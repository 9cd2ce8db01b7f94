from fastapi import APIRouter
from typing import Dict, Any
from ..config import settings
from ..core.pipeline import get_pipeline

router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that reports settlement pipeline state"""

    pipeline = get_pipeline()
    stats = pipeline.stats()

    # Records that settled but never reached the ledger
    unrecorded = stats["tracker"]["unrecorded"]

    return {
        "status": "healthy" if stats["consumer_running"] and unrecorded == 0 else "degraded",
        "backend": {
            "url": settings.backend_api_url,
            "authenticated": settings.has_backend_token,
        },
        "pipeline": stats,
    }
