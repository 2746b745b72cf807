from typing import List, Optional
import logging
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = 'https://accounts.google.com/o/oauth2/auth'
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'


class GoogleOAuthClient:
    """Web-server OAuth flow for connecting a Google account"""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, scopes: List[str]):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes

    def _flow(self) -> Flow:
        client_config = {
            'web': {
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'auth_uri': GOOGLE_AUTH_URI,
                'token_uri': GOOGLE_TOKEN_URI,
                'redirect_uris': [self.redirect_uri],
            }
        }
        # The callback is handled by a different Flow instance, so no PKCE verifier
        return Flow.from_client_config(
            client_config,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, state: Optional[str] = None) -> str:
        """URL of the consent screen; offline access so a refresh token is issued"""
        kwargs = {'access_type': 'offline', 'prompt': 'consent', 'include_granted_scopes': 'true'}
        if state:
            kwargs['state'] = state
        url, _ = self._flow().authorization_url(**kwargs)
        return url

    def exchange_code(self, code: str) -> Credentials:
        """Exchange an authorization code for credentials"""
        flow = self._flow()
        flow.fetch_token(code=code)
        logger.info("Exchanged authorization code for Google credentials")
        return flow.credentials

    def get_user_email(self, credentials: Credentials) -> Optional[str]:
        service = build('oauth2', 'v2', credentials=credentials, cache_discovery=False)
        user_info = service.userinfo().get().execute()
        return user_info.get('email')
