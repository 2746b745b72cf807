class FeedSyncError(Exception):
    """Base error carrying the HTTP status surfaced at the API boundary"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(FeedSyncError):
    """Required input is missing or malformed"""
    status_code = 400


class AuthenticationError(FeedSyncError):
    """The inbound request could not be tied to a user"""
    status_code = 401


class RemoteAuthError(FeedSyncError):
    """Google rejected the stored credentials; the user must sign in again"""
    status_code = 401


class RemoteAccessError(FeedSyncError):
    """The remote calendar is missing or not accessible with these credentials"""
    status_code = 403


class NotFoundError(FeedSyncError):
    """The resource does not exist or is not owned by the caller"""
    status_code = 404
