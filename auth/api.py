"""HTTP routes for authentication.

Domain errors propagate to the global handlers in api.errors.
"""

import ipaddress
from dataclasses import asdict

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from auth.devices import device_from_request
from auth.security_middleware import SESSION_COOKIE
from auth.service import AuthService
from auth.types import (
    AuthenticatedUser,
    DeviceInfo,
    LoginRequest,
    PasswordResetRequest,
    PasswordResetVerifyRequest,
    RegisterRequest,
    Session,
    VerifyCodeRequest,
)
from auth.verification import VerificationRequestResult
from api.base import success_response, error_response, ErrorCodes


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _device(request: Request) -> DeviceInfo:
    return device_from_request(request.headers.get("User-Agent"), _get_client_ip(request))


def _code_sent_payload(result: VerificationRequestResult) -> dict:
    payload = asdict(result)
    payload["purpose"] = result.purpose.value
    payload["expires_at"] = result.expires_at.isoformat()
    return payload


def _user_payload(authenticated: AuthenticatedUser) -> dict:
    return {"user": authenticated.user.model_dump(mode="json")}


def _session_payload(session: Session, current_token: str | None) -> dict:
    return {
        "device": session.device.model_dump(mode="json"),
        "created_at": session.created_at.isoformat(),
        "last_activity_at": session.last_activity_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
        "current": session.token == current_token,
    }


def create_auth_router(auth_service: AuthService, secure_cookies: bool = True) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(tags=["auth"])

    def set_session_cookie(response: Response, session: Session) -> None:
        response.set_cookie(
            key=SESSION_COOKIE,
            value=session.token,
            httponly=True,
            secure=secure_cookies,
            samesite="lax",
            max_age=int((session.expires_at - session.last_activity_at).total_seconds()),
        )

    @router.post("/register", status_code=202)
    async def register(request: Request, body: RegisterRequest):
        """Start registration: email a code. The account is created on verify."""
        result = auth_service.start_registration(
            email=body.email,
            username=body.username,
            password=body.password,
            display_name=body.display_name,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response(_code_sent_payload(result))

    @router.post("/register/verify")
    async def verify_registration(request: Request, response: Response, body: VerifyCodeRequest):
        """Verify registration code, create the account, set session cookie."""
        result = auth_service.complete_registration(body.email, body.code, _device(request))
        set_session_cookie(response, result.session)
        response.status_code = 201
        return success_response(_user_payload(result))

    @router.post("/login")
    async def login(request: Request, response: Response, body: LoginRequest):
        """Password login.

        Returns:
            - verification_required=False: session cookie set, user returned
            - verification_required=True: a login code was emailed; finish at /login/verify
        """
        result = auth_service.login(body.email, body.password, _device(request))

        if result.verification_required:
            response.status_code = 202
            return success_response({
                "verification_required": True,
                **_code_sent_payload(result.verification),
            })

        set_session_cookie(response, result.authenticated.session)
        return success_response({
            "verification_required": False,
            **_user_payload(result.authenticated),
        })

    @router.post("/login/verify")
    async def verify_login(request: Request, response: Response, body: VerifyCodeRequest):
        """Verify login code and set session cookie."""
        result = auth_service.complete_login(body.email, body.code, _device(request))
        set_session_cookie(response, result.session)
        return success_response(_user_payload(result))

    @router.post("/password-reset", status_code=202)
    async def request_password_reset(request: Request, body: PasswordResetRequest):
        """Request a reset code. Same answer whether or not the account exists."""
        auth_service.request_password_reset(
            email=body.email,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({
            "message": "If an account exists for this email, a reset code has been sent."
        })

    @router.post("/password-reset/verify")
    async def complete_password_reset(request: Request, response: Response, body: PasswordResetVerifyRequest):
        """Verify reset code and set the new password. Signs out every session."""
        terminated = auth_service.complete_password_reset(
            email=body.email,
            code=body.code,
            new_password=body.new_password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        response.delete_cookie(key=SESSION_COOKIE)
        return success_response({"sessions_terminated": terminated})

    @router.post("/logout")
    async def logout(request: Request, response: Response):
        """Logout - terminate session and clear cookie."""
        session_token = request.cookies.get(SESSION_COOKIE)

        if session_token:
            auth_service.logout(
                session_token=session_token,
                ip_address=_get_client_ip(request),
            )

        response.delete_cookie(key=SESSION_COOKIE)
        return success_response({"message": "Logged out successfully"})

    @router.post("/logout-all")
    async def logout_all(request: Request, response: Response):
        """Terminate every session of the current user. Requires authentication."""
        terminated = auth_service.logout_all(
            request.state.user_id,
            ip_address=_get_client_ip(request),
        )
        response.delete_cookie(key=SESSION_COOKIE)
        return success_response({"sessions_terminated": terminated})

    @router.get("/me")
    async def get_current_user(request: Request):
        """Get current authenticated user.

        Requires authentication (middleware sets user context).
        """
        user = auth_service.get_user(request.state.user_id)
        if user is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )
        return success_response({"user": user.model_dump(mode="json")})

    @router.get("/sessions")
    async def list_sessions(request: Request):
        """Active sessions of the current user, most recent first."""
        current_token = request.cookies.get(SESSION_COOKIE)
        sessions = auth_service.list_sessions(request.state.user_id)
        return success_response({
            "sessions": [_session_payload(s, current_token) for s in sessions]
        })

    return router
