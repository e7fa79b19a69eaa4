import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ppm_scheduler.exceptions import NotificationError
from ppm_scheduler.models.orm import Notification
from ppm_scheduler.models.schemas import NotificationPayload

logger = logging.getLogger("ppm_scheduler.notifications")


class NotificationDispatcher(Protocol):
    def notify(self, user_ids: Sequence[int], payload: NotificationPayload) -> None:
        """Deliver ``payload`` to every user, raising NotificationError on failure."""
        ...


class DatabaseNotificationDispatcher:
    """Stores one in-app notification row per recipient.

    Rows are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def notify(self, user_ids: Sequence[int], payload: NotificationPayload) -> None:
        if not user_ids:
            raise NotificationError("No recipients given")

        try:
            for user_id in user_ids:
                self.session.add(
                    Notification(
                        company_id=payload.company_id,
                        user_id=user_id,
                        type=payload.type,
                        action=payload.action,
                        title=payload.title,
                        message=payload.message,
                        data=payload.data,
                        created_by=payload.created_by,
                    )
                )
            self.session.flush()
        except SQLAlchemyError as exc:
            raise NotificationError(
                f"Could not store notifications for users {list(user_ids)}"
            ) from exc

        logger.debug(
            "Stored %s notification for %d user(s)", payload.type, len(user_ids)
        )
