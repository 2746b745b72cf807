from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging
import uuid

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from ..database.connection import DatabaseManager
from ..database.models import ConnectedAccount
from ..errors import NotFoundError, RemoteAuthError
from ..integrations.google_oauth import GOOGLE_TOKEN_URI

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def from_credentials(cls, credentials) -> 'OAuthTokens':
        # google-auth keeps expiry as a naive UTC datetime
        expires_at = _as_utc(credentials.expiry) or datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
        return cls(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            scopes=list(credentials.scopes or []),
        )


class TokenManager:
    """Stores per-account OAuth tokens and hands out refreshed credentials.

    Constructed explicitly and passed to the services that need it.
    """

    def __init__(self, database_manager: DatabaseManager, client_id: str, client_secret: str,
                 scopes: Optional[List[str]] = None, token_uri: str = GOOGLE_TOKEN_URI):
        self.database_manager = database_manager
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.token_uri = token_uri

    def store_tokens(self, provider: str, email: str, tokens: OAuthTokens, user_id: str) -> str:
        """Create or update the account for (provider, email, user) and return its id"""
        with self.database_manager.transaction() as session:
            account = session.query(ConnectedAccount).filter_by(
                provider=provider, email=email, user_id=user_id
            ).first()

            if account is None:
                account = ConnectedAccount(
                    id=str(uuid.uuid4()),
                    provider=provider,
                    email=email,
                    user_id=user_id,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    expires_at=tokens.expires_at,
                )
                session.add(account)
                logger.info(f"Connected new {provider} account for user {user_id}")
            else:
                account.access_token = tokens.access_token
                # Google omits the refresh token when the user already granted access
                if tokens.refresh_token:
                    account.refresh_token = tokens.refresh_token
                account.expires_at = tokens.expires_at
                logger.info(f"Updated tokens for {provider} account {account.id}")

            return account.id

    def get_account(self, account_id: str, user_id: str) -> Optional[ConnectedAccount]:
        with self.database_manager.transaction() as session:
            return session.query(ConnectedAccount).filter_by(id=account_id, user_id=user_id).first()

    def get_credentials(self, account_id: str, user_id: str) -> Credentials:
        """Credentials for an account owned by ``user_id``, refreshed if expired"""
        account = self.get_account(account_id, user_id)
        if account is None:
            raise NotFoundError("Account not found")

        expiry = _as_utc(account.expires_at)
        credentials = Credentials(
            token=account.access_token,
            refresh_token=account.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes,
            expiry=expiry.replace(tzinfo=None) if expiry else None,
        )

        if credentials.expired:
            if not credentials.refresh_token:
                raise RemoteAuthError("Authentication failed. Please try signing in again.")
            try:
                credentials.refresh(Request())
            except RefreshError as e:
                logger.error(f"Failed to refresh token for account {account_id}: {str(e)}")
                raise RemoteAuthError("Authentication failed. Please try signing in again.") from e
            self._save_refreshed(account_id, credentials)

        return credentials

    def _save_refreshed(self, account_id: str, credentials: Credentials):
        tokens = OAuthTokens.from_credentials(credentials)
        with self.database_manager.transaction() as session:
            account = session.get(ConnectedAccount, account_id)
            account.access_token = tokens.access_token
            if tokens.refresh_token:
                account.refresh_token = tokens.refresh_token
            account.expires_at = tokens.expires_at
        logger.info(f"Refreshed access token for account {account_id}")
