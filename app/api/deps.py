from uuid import UUID

from fastapi import Header, HTTPException, status

from app.core.context import set_actor_id
from app.services.notifications import NotificationGateway, get_notification_gateway


async def get_actor_id(
    actor_id: str | None = Header(default=None, alias="X-Actor-ID"),
) -> UUID | None:
    """Identity is established upstream; the acting user arrives as a header."""
    if not actor_id:
        return None
    try:
        parsed = UUID(actor_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_actor", "message": "X-Actor-ID must be a UUID"},
        ) from exc
    set_actor_id(str(parsed))
    return parsed


def get_notifier() -> NotificationGateway:
    return get_notification_gateway()
