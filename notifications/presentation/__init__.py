from fastapi import APIRouter

from .consumers import ActivityFeed, ToastPresenter, UnreadBadge
from .notification import router as notification_router

router = APIRouter(tags=["notifications"])
router.include_router(notification_router)

__all__ = ["router", "ActivityFeed", "ToastPresenter", "UnreadBadge"]
