import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from pawmart.api.deps import get_store
from pawmart.database.base import OrderStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(store: OrderStore = Depends(get_store)):
    """Storage health; 503 when the backing store is unreachable."""
    storage = await store.health_check()
    healthy = bool(storage.get("healthy"))
    if not healthy:
        logger.warning(f"Storage health check failed: {storage}")
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "timestamp": time.time(),
            "services": {"storage": storage},
        },
    )
