from fastapi import APIRouter, Depends

from feedwatch.core.dependencies import get_runtime
from feedwatch.runtime import AppRuntime
from feedwatch.schemas.post import RetentionState

router = APIRouter(prefix="/posts", tags=["posts"])


@router.get("", response_model=RetentionState, summary="List Retained Posts")
async def list_posts(runtime: AppRuntime = Depends(get_runtime)):
    """The retention window, newest first."""
    return await runtime.store.get_state()


@router.delete("", status_code=204, summary="Clear Retained Posts")
async def clear_posts(runtime: AppRuntime = Depends(get_runtime)):
    await runtime.store.reset()
