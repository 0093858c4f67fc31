# chat_uploads/services/users.py
from typing import Callable, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chat_uploads.core.errors import InternalProcessingError, NotFoundError
from chat_uploads.models.user import User

logger = structlog.get_logger(__name__)


class AvatarLinker(Protocol):
    def link_avatar(self, user_id: str, avatar_url: str) -> None:
        ...


class SqlAvatarLinker:
    """Schrijft de avatar URL op het user record (alleen na een COMPLETED pipeline)."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def link_avatar(self, user_id: str, avatar_url: str) -> None:
        db = self.session_factory()
        try:
            user = db.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            user.avatar_url = avatar_url
            db.commit()
            logger.info("avatar_linked", user_id=user_id, avatar_url=avatar_url)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("avatar_link_failed", user_id=user_id, error=str(e))
            raise InternalProcessingError(f"Failed to update avatar for {user_id}: {e}", cause=e) from e
        finally:
            db.close()
