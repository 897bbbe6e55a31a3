"""Security middleware for FastAPI - session validation and user context."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.session import SessionManager
from auth.exceptions import SessionExpiredError
from api.base import error_response, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id

SESSION_COOKIE = "session_token"


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates session and sets user context.

    For protected routes:
    1. Extracts session token from the 'session_token' cookie
    2. Validates and slides the session via SessionManager.touch
    3. Sets user_id in request.state and user context (for RLS)
    4. Clears context after request completes

    Public paths bypass authentication entirely. A public entry matches
    itself and anything below it, never a sibling sharing its prefix
    (/auth/logout is public, /auth/logout-all is not).
    """

    PUBLIC_PATHS = [
        "/auth/register",
        "/auth/login",
        "/auth/password-reset",
        "/auth/logout",
        "/credits/policy",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, session_manager: SessionManager):
        super().__init__(app)
        self._session_manager = session_manager

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        if self._is_public_path(path):
            return await call_next(request)

        session_token = request.cookies.get(SESSION_COOKIE)

        if not session_token:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        try:
            session = self._session_manager.touch(session_token)
        except SessionExpiredError:
            response = JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.SESSION_EXPIRED,
                    "Session has expired",
                ).model_dump(mode="json"),
            )
            response.delete_cookie(key=SESSION_COOKIE)
            return response

        # Set user context for RLS
        set_current_user_id(session.user_id)
        request.state.user_id = session.user_id
        request.state.session = session

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_user_id()
