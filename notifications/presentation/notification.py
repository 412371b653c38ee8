import asyncio

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from loguru import logger

from config.base import Settings, get_settings
from core.presentation.responses import CreatedResponse, SuccessResponse, UpdatedResponse

from ..application.rules import (
    CreateNotificationRule,
    EstablishSSEConnectionRule,
    GetNotificationPreferencesRule,
    GetUserNotificationsRule,
    MarkNotificationsReadRule,
    UpdateNotificationPreferencesRule,
)
from ..domain.entities import NotificationPreferences, NotificationSender, NotificationType
from ..infrastructure.factory import (
    get_current_user_id,
    get_notification_channel_manager,
    get_notification_publisher,
    get_notification_repository,
)
from .requests import CreateNotificationRequest, MarkReadRequest
from .responses import MarkReadResponse

router = APIRouter(prefix="/api/notifications")


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
    request: CreateNotificationRequest,
    notification_repository=Depends(get_notification_repository),
    publisher=Depends(get_notification_publisher),
    current_user_id: str = Depends(get_current_user_id),
):
    """Create a notification and push it to the receiver's open streams.

    The acting user is the sender, except for system notifications which
    carry no sender. Notifying yourself is accepted and ignored.

    Parameters
    ----------
    request : CreateNotificationRequest
        Notification creation request data
    notification_repository
        Dependency-injected notification repository
    publisher
        Dependency-injected notification publisher
    current_user_id : str
        Acting user

    Returns
    -------
    CreatedResponse
        Response containing the created notification, or None
    """
    sender = None
    if request.type != NotificationType.SYSTEM:
        sender = NotificationSender(
            id=current_user_id,
            name=request.sender_name,
            username=request.sender_username,
            image=request.sender_image,
        )

    create_notification_rule = CreateNotificationRule(
        receiver_id=request.receiver_id,
        notification_type=request.type,
        content=request.content,
        sender=sender,
        link_url=request.link_url,
        notification_repository=notification_repository,
        publisher=publisher,
    )

    created_notification = await create_notification_rule.execute()

    if created_notification is None:
        return CreatedResponse(message="Self-notifications are not created")

    return CreatedResponse(
        data=created_notification.to_wire(),
        message="Notification created successfully",
    )


@router.get("", response_model=SuccessResponse, status_code=status.HTTP_200_OK)
async def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    notification_repository=Depends(get_notification_repository),
    current_user_id: str = Depends(get_current_user_id),
):
    """Get one page of notifications for the current user.

    Parameters
    ----------
    page : int
        1-based page number
    limit : int
        Page size (1-100)
    unread_only : bool
        If True, return only unread notifications
    notification_repository
        Dependency-injected notification repository
    current_user_id : str
        Acting user

    Returns
    -------
    SuccessResponse
        Response containing notifications, unread count and pagination
    """
    get_notifications_rule = GetUserNotificationsRule(
        user_id=current_user_id,
        notification_repository=notification_repository,
        page=page,
        limit=limit,
        unread_only=unread_only,
    )

    notification_page = await get_notifications_rule.execute()

    return SuccessResponse(
        data=notification_page.to_wire(),
        message="Notifications retrieved successfully",
    )


@router.patch("", response_model=UpdatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def mark_notifications_read(
    request: MarkReadRequest,
    notification_repository=Depends(get_notification_repository),
    publisher=Depends(get_notification_publisher),
    current_user_id: str = Depends(get_current_user_id),
):
    """Mark the given notifications, or all of them, as read.

    The new unread count is pushed to the user's open streams.

    Parameters
    ----------
    request : MarkReadRequest
        Ids to mark, or ``all``
    notification_repository
        Dependency-injected notification repository
    publisher
        Dependency-injected notification publisher
    current_user_id : str
        Acting user

    Returns
    -------
    UpdatedResponse
        Response containing the number of changed notifications
    """
    return await _mark_read(
        current_user_id,
        notification_repository,
        publisher,
        notification_ids=request.ids,
        mark_all=request.all,
    )


@router.post(
    "/mark-all-read", response_model=UpdatedResponse, status_code=status.HTTP_202_ACCEPTED
)
async def mark_all_notifications_read(
    notification_repository=Depends(get_notification_repository),
    publisher=Depends(get_notification_publisher),
    current_user_id: str = Depends(get_current_user_id),
):
    """Mark every notification of the current user as read."""
    return await _mark_read(
        current_user_id, notification_repository, publisher, mark_all=True
    )


async def _mark_read(
    user_id, notification_repository, publisher, notification_ids=None, mark_all=False
) -> UpdatedResponse:
    mark_read_rule = MarkNotificationsReadRule(
        user_id=user_id,
        notification_repository=notification_repository,
        publisher=publisher,
        notification_ids=notification_ids,
        mark_all=mark_all,
    )
    marked = await mark_read_rule.execute()
    unread_count = await notification_repository.count_unread(user_id)

    return UpdatedResponse(
        data=MarkReadResponse(marked=marked, unread_count=unread_count).to_wire(),
        message="Notifications marked as read",
    )


@router.get("/preferences", response_model=SuccessResponse, status_code=status.HTTP_200_OK)
async def get_preferences(
    notification_repository=Depends(get_notification_repository),
    current_user_id: str = Depends(get_current_user_id),
):
    """Get the notification preferences of the current user.

    Returns the defaults when the user never saved any.
    """
    preferences = await GetNotificationPreferencesRule(
        user_id=current_user_id,
        notification_repository=notification_repository,
    ).execute()

    return SuccessResponse(
        data=preferences.to_wire(),
        message="Preferences retrieved successfully",
    )


@router.put("/preferences", response_model=UpdatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def update_preferences(
    preferences: NotificationPreferences,
    notification_repository=Depends(get_notification_repository),
    current_user_id: str = Depends(get_current_user_id),
):
    """Replace the notification preferences of the current user.

    Parameters
    ----------
    preferences : NotificationPreferences
        Full preference structure
    notification_repository
        Dependency-injected notification repository
    current_user_id : str
        Acting user

    Returns
    -------
    UpdatedResponse
        Response containing the stored preferences
    """
    saved = await UpdateNotificationPreferencesRule(
        user_id=current_user_id,
        preferences=preferences,
        notification_repository=notification_repository,
    ).execute()

    return UpdatedResponse(
        data=saved.to_wire(),
        message="Preferences updated successfully",
    )


@router.get("/stream", response_class=StreamingResponse)
async def stream_notifications(
    publisher=Depends(get_notification_publisher),
    channel_manager=Depends(get_notification_channel_manager),
    notification_repository=Depends(get_notification_repository),
    settings: Settings = Depends(get_settings),
    current_user_id: str = Depends(get_current_user_id),
):
    """Establish Server-Sent Events connection for real-time notifications.

    The stream starts with a ``: connected`` comment and the current unread
    count, then relays notification and unread-count frames. A
    ``: heartbeat`` comment is written whenever the stream stays idle for
    ``stream_heartbeat_seconds``.

    Parameters
    ----------
    publisher
        Dependency-injected notification publisher
    channel_manager
        Dependency-injected channel manager
    notification_repository
        Dependency-injected notification repository
    settings : Settings
        Application settings
    current_user_id : str
        Acting user

    Returns
    -------
    StreamingResponse
        SSE stream of notifications
    """
    logger.info(f"Establishing SSE connection for user {current_user_id}")

    sse_rule = EstablishSSEConnectionRule(
        user_id=current_user_id,
        publisher=publisher,
        notification_repository=notification_repository,
        channel_manager=channel_manager,
        heartbeat_seconds=settings.stream_heartbeat_seconds,
    )

    async def event_generator():
        """Relay SSE frames until the client goes away."""
        try:
            async for event in sse_rule.execute():
                yield event

        except asyncio.CancelledError:
            logger.info(f"SSE connection cancelled for user {current_user_id}")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
