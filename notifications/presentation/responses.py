from ..domain.entities import WireModel


class MarkReadResponse(WireModel):
    """Response model for a mark-as-read request.

    Attributes
    ----------
    marked : int
        Number of notifications that changed state
    unread_count : int
        Unread notifications left afterwards
    """

    marked: int
    unread_count: int
