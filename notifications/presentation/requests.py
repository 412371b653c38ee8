from typing import List

from pydantic import Field, model_validator

from ..domain.entities import NotificationType, WireModel


class CreateNotificationRequest(WireModel):
    """Request model for creating and pushing a notification.

    Attributes
    ----------
    receiver_id : str
        User the notification is addressed to
    type : NotificationType
        Category of the notification
    content : str
        Human-readable notification text
    link_url : str | None
        Deep link opened on click
    sender_name : str | None
        Display name of the acting user
    sender_username : str | None
        Handle of the acting user
    sender_image : str | None
        Avatar URL of the acting user
    """

    receiver_id: str = Field(min_length=1)
    type: NotificationType
    content: str = Field(min_length=1)
    link_url: str | None = None
    sender_name: str | None = None
    sender_username: str | None = None
    sender_image: str | None = None


class MarkReadRequest(WireModel):
    """Request model for marking notifications as read.

    Exactly one of ``ids`` or ``all`` must be given.
    """

    ids: List[str] | None = None
    all: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "MarkReadRequest":
        if not self.all and not self.ids:
            raise ValueError("Either ids or all is required")
        return self
