from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import secrets

from ..database.connection import DatabaseManager
from ..database.models import UserSession
from ..errors import AuthenticationError

logger = logging.getLogger(__name__)


class AuthService:
    """Validates session tokens presented by API callers"""

    def __init__(self, database_manager: DatabaseManager, session_ttl: timedelta = timedelta(hours=24)):
        self.database_manager = database_manager
        self.session_ttl = session_ttl

    def create_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self.database_manager.transaction() as session:
            session.add(UserSession(
                token=token,
                user_id=user_id,
                expires_at=datetime.now(timezone.utc) + self.session_ttl,
            ))
        logger.info(f"Created session for user {user_id}")
        return token

    def authenticate(self, token: Optional[str]) -> str:
        """Return the user id behind ``token`` or raise ``AuthenticationError``"""
        if not token:
            raise AuthenticationError("Unauthorized")

        with self.database_manager.transaction() as session:
            user_session = session.get(UserSession, token)

        if user_session is None:
            raise AuthenticationError("Unauthorized")

        expires_at = user_session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            logger.info(f"Rejected expired session for user {user_session.user_id}")
            raise AuthenticationError("Session expired")

        return user_session.user_id
