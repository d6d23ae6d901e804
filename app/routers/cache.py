"""Month cache inspection router."""
from fastapi import APIRouter, Depends

from app.middleware.auth import get_current_user, require_same_user, CurrentUser
from app.schemas.plan import CacheKeysResponse
from app.services.plan_cache_service import plan_cache
from app.utils.metrics import metrics_collector

router = APIRouter(tags=["Cache"])  # No prefix since main.py adds /api prefix


@router.get("/{user_id}/cache/keys", response_model=CacheKeysResponse)
async def list_cache_keys(user_id: str, current_user: CurrentUser = Depends(get_current_user)):
    """Cached month keys of the user."""
    require_same_user(user_id, current_user)
    return {"keys": plan_cache.keys(user_id)}


@router.delete("/{user_id}/cache")
async def clear_cache(user_id: str, current_user: CurrentUser = Depends(get_current_user)):
    """Drop every cached month of the user."""
    require_same_user(user_id, current_user)
    evicted = plan_cache.evict_user(user_id)
    metrics_collector.increment_counter("month_cache_evictions_total", evicted)
    return {"evicted": evicted}
