"""API dependencies for the notification boundary."""
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from campus_notifications.services.notification_state import NotificationState


def get_notification_state(request: Request) -> NotificationState:
    """
    Dependency returning the session's shared notification state.

    The state is built by the application lifespan and kept on `app.state`.

    Raises:
        HTTPException: 503 if the state was never started or is already closed
    """
    state = getattr(request.app.state, "notification_state", None)
    if state is None or state.closed:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "code": "notifications_unavailable",
                "message": "Notification state is not running",
                "retriable": True,
            },
        )
    return state


# Type alias for dependency injection
SharedState = Annotated[NotificationState, Depends(get_notification_state)]
