import logging
from datetime import timedelta
from functools import lru_cache
from typing import Optional
from fastapi import FastAPI, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from ..config.manager import ConfigManager
from ..database.connection import DatabaseManager
from ..errors import FeedSyncError, ValidationError
from ..integrations.google_oauth import GoogleOAuthClient
from ..models import AddFeedRequest, FeedResponse, ResyncFeedRequest
from ..services.auth_service import AuthService
from ..services.calendar_sync_service import CalendarSyncService
from ..services.token_manager import TokenManager

logger = logging.getLogger(__name__)

SESSION_COOKIE = 'session_token'

config_manager = ConfigManager()
logging.basicConfig(level=config_manager.get('development.log_level', 'INFO'))


@lru_cache()
def get_database_manager() -> DatabaseManager:
    db_manager = DatabaseManager(config_manager.get('app.database_url'))
    db_manager.init_database()
    return db_manager


@lru_cache()
def get_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=config_manager.get('google.client_id'),
        client_secret=config_manager.get('google.client_secret'),
        redirect_uri=config_manager.get('google.redirect_uri'),
        scopes=config_manager.get('google.scopes'),
    )


def get_auth_service(db_manager: DatabaseManager = Depends(get_database_manager)) -> AuthService:
    return AuthService(db_manager, timedelta(hours=config_manager.get('app.session_ttl_hours', 24)))


def get_sync_service(db_manager: DatabaseManager = Depends(get_database_manager),
                     oauth_client: GoogleOAuthClient = Depends(get_oauth_client)) -> CalendarSyncService:
    """Services are built per request around a fresh TokenManager"""
    token_manager = TokenManager(
        db_manager,
        client_id=config_manager.get('google.client_id'),
        client_secret=config_manager.get('google.client_secret'),
        scopes=config_manager.get('google.scopes'),
    )
    return CalendarSyncService(
        db_manager,
        token_manager,
        oauth_client,
        timezone=config_manager.get('app.timezone'),
        page_size=config_manager.get('app.sync_page_size'),
        default_strategy=config_manager.get('app.recurrence_strategy'),
    )


def session_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie"""
    token: Optional[str] = None
    authorization = request.headers.get('authorization')
    if authorization and authorization.lower().startswith('bearer '):
        token = authorization[7:].strip()
    return token or request.cookies.get(SESSION_COOKIE)


def get_current_user(request: Request, auth_service: AuthService = Depends(get_auth_service)) -> str:
    return auth_service.authenticate(session_token(request))


app = FastAPI(title="feedsync API")


@app.exception_handler(FeedSyncError)
async def feed_sync_error_handler(request: Request, exc: FeedSyncError):
    if exc.status_code >= 500:
        logger.error(f"Error processing request: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/api/calendar/google/connect")
async def start_oauth(user_id: str = Depends(get_current_user),
                      oauth_client: GoogleOAuthClient = Depends(get_oauth_client)):
    """Send the user to Google's consent screen"""
    return RedirectResponse(oauth_client.authorization_url())


@app.get("/api/calendar/google")
async def complete_oauth(request: Request, code: Optional[str] = None,
                         auth_service: AuthService = Depends(get_auth_service),
                         sync_service: CalendarSyncService = Depends(get_sync_service)):
    """Handle the Google OAuth callback and connect the account's calendars"""
    if not code:
        raise ValidationError("No code provided")
    user_id = await run_in_threadpool(auth_service.authenticate, session_token(request))

    try:
        await run_in_threadpool(sync_service.complete_oauth, user_id, code)
    except FeedSyncError:
        raise
    except Exception as e:
        logger.error(f"Google Calendar OAuth error: {str(e)}")
        return JSONResponse(status_code=500, content={"error": "Failed to authenticate with Google"})

    return RedirectResponse(f"{config_manager.get('app.base_url')}/settings")


@app.post("/api/calendar/google", response_model=FeedResponse)
async def add_calendar(body: AddFeedRequest,
                       user_id: str = Depends(get_current_user),
                       sync_service: CalendarSyncService = Depends(get_sync_service)):
    """Add a Google Calendar to sync"""
    try:
        return await run_in_threadpool(
            sync_service.add_feed, user_id, body.account_id, body.calendar_id, body.name, body.color
        )
    except FeedSyncError:
        raise
    except Exception as e:
        logger.error(f"Failed to add calendar: {str(e)}")
        return JSONResponse(status_code=500, content={"error": "Failed to add calendar"})


@app.put("/api/calendar/google")
async def sync_calendar(body: ResyncFeedRequest,
                        user_id: str = Depends(get_current_user),
                        sync_service: CalendarSyncService = Depends(get_sync_service)):
    """Sync specific calendar"""
    try:
        status = await run_in_threadpool(sync_service.resync_feed, user_id, body.feed_id)
    except FeedSyncError:
        raise
    except Exception as e:
        logger.error(f"Failed to sync Google calendar: {str(e)}")
        return JSONResponse(status_code=500, content={"error": "Failed to sync calendar"})

    return {"success": True, **status.model_dump()}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting FastAPI application with uvicorn...")
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
