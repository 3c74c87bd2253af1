"""
Authentication API Routes.

This module exposes the SessionManager and MFA enrollment operations over HTTP:
- /api/auth/sign-in, /api/auth/mfa - Session establishment
- /api/auth/session - Refresh and read the current session
- /api/auth/logout - Terminate the session
- /api/auth/register, /api/auth/confirm, /api/auth/resend-code - Registration
- /api/auth/password/* - Password reset and change
- /api/auth/mfa/* - MFA status, enrollment and disablement

Each caller is identified by the ``session`` cookie. The cookie value selects
the caller's own SessionManager from the SessionRegistry on ``app.state``;
operations on an established session answer 401 without a known cookie.
"""

import logging
from typing import Optional, Tuple
from datetime import datetime, timezone

from fastapi import APIRouter, Cookie, Request, Response, HTTPException
from pydantic import BaseModel, Field

from auth.exceptions import (
    AuthError,
    InvalidCodeError,
    InvalidCredentialsError,
    InvalidStateError,
    ProfileLookupError,
    ProviderRequestError,
    ProviderUnavailableError,
    UnauthenticatedError,
)
from auth.mfa import MfaEnrollmentService
from auth.models import AuthStatus, RegistrationFields
from auth.session_manager import SessionManager
from auth.session_registry import SessionRegistry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])


SESSION_COOKIE = "session"

STATUS_BY_ERROR = {
    InvalidCredentialsError: 401,
    UnauthenticatedError: 401,
    InvalidCodeError: 400,
    ProviderRequestError: 400,
    InvalidStateError: 409,
    ProfileLookupError: 502,
    ProviderUnavailableError: 503,
}


# ============================================================
# Request/Response Models
# ============================================================

class SignInRequest(BaseModel):
    email: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1, description="Password")


class CodeRequest(BaseModel):
    code: str = Field(..., min_length=1, description="One-time or confirmation code")
    email: Optional[str] = Field(None, description="Account email, defaults to the remembered one")


class AuthResponse(BaseModel):
    """Result of a sign-in or MFA step."""
    status: str = Field(..., description="success, mfa_required or rejected")
    reason: Optional[str] = Field(None, description="Rejection reason")


class LogoutRequest(BaseModel):
    clear_local: bool = Field(True, description="Also erase cached identity and profile")


class LogoutResponse(BaseModel):
    success: bool = Field(..., description="Whether logout was successful")
    message: str = Field(..., description="Logout status message")


class SessionResponse(BaseModel):
    """Session information response."""
    user: dict = Field(..., description="Profile information")
    session: dict = Field(..., description="Session information")


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    company: str = ""
    offer_type: Optional[str] = Field(None, description="Marketplace offer type hint")


class RegistrationResponse(BaseModel):
    status: str
    next_step: Optional[str] = None
    error_message: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[str] = None


class ConfirmPasswordRequest(BaseModel):
    code: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    email: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class TemporaryPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1)
    temporary_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class MfaSetupRequest(BaseModel):
    password: str = Field(..., min_length=1)
    email: Optional[str] = None


class MfaConfirmRequest(BaseModel):
    password: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    device_name: str = Field("Authenticator", min_length=1)
    sms: bool = False
    email: Optional[str] = None


class MfaDisableRequest(BaseModel):
    password: str = Field(..., min_length=1)
    code: str = ""
    email: Optional[str] = None


# ============================================================
# Dependency Injection
# ============================================================

def get_session_registry(request: Request) -> SessionRegistry:
    """Get the application's session registry."""
    return request.app.state.session_registry


def get_mfa_service(request: Request) -> MfaEnrollmentService:
    """Get the application's MFA enrollment service."""
    return request.app.state.mfa_service


def to_http_exception(error: AuthError) -> HTTPException:
    """Map an authentication error onto an HTTP error response."""
    status_code = 500
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            status_code = code
            break
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail={"code": error.error_code, "message": error.message},
        headers=headers,
    )


def set_session_cookie(request: Request, response: Response, session_id: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        path="/",
        secure=request.url.scheme == "https",
        httponly=True,
        samesite="lax",
    )


async def require_manager(request: Request, session_id: Optional[str]) -> SessionManager:
    """Resolve the caller's SessionManager from the session cookie.

    Raises:
        HTTPException: 401 when the cookie is missing or unknown
    """
    manager = await get_session_registry(request).resolve(session_id)
    if manager is None:
        raise to_http_exception(UnauthenticatedError("No session for this client"))
    return manager


async def manager_for(
    request: Request,
    response: Response,
    session_id: Optional[str],
) -> Tuple[str, SessionManager, bool]:
    """Resolve the caller's SessionManager, allocating one for new callers.

    Returns:
        Tuple of (session id, manager, whether the manager was just created)
    """
    registry = get_session_registry(request)
    manager = await registry.resolve(session_id)
    if manager is not None:
        return session_id, manager, False

    session_id, manager = registry.create()
    set_session_cookie(request, response, session_id)
    return session_id, manager, True


async def _account_email(request: Request, session_id: Optional[str], email: Optional[str]) -> str:
    if email:
        return email
    manager = await get_session_registry(request).resolve(session_id)
    if manager is None or not manager.identifier:
        raise HTTPException(status_code=400, detail="Email is required")
    return manager.identifier


# ============================================================
# Session Endpoints
# ============================================================

@router.post("/sign-in", response_model=AuthResponse)
async def sign_in(
    request: Request,
    response: Response,
    body: SignInRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Sign in with email and password.

    Issues the session cookie. Returns ``mfa_required`` when the account has a
    second factor; the client then submits the code to /api/auth/mfa with the
    same cookie.
    """
    registry = get_session_registry(request)
    manager = await registry.resolve(session_id)
    created = manager is None
    if created:
        session_id, manager = registry.create()

    try:
        result = await manager.establish(body.email, body.password)
    except AuthError as e:
        if created:
            registry.discard(session_id)
        raise to_http_exception(e)

    if created:
        # A rejected first attempt leaves no session behind
        if result.status == AuthStatus.REJECTED:
            registry.discard(session_id)
        else:
            set_session_cookie(request, response, session_id)

    logger.info(f"Sign-in: session_id={session_id}, status={result.status.value}")
    return AuthResponse(status=result.status.value, reason=result.reason)


@router.post("/mfa", response_model=AuthResponse)
async def submit_mfa_code(
    request: Request,
    body: CodeRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Answer the pending second-factor challenge."""
    manager = await require_manager(request, session_id)
    try:
        result = await manager.complete_mfa(body.code)
    except AuthError as e:
        raise to_http_exception(e)
    return AuthResponse(status=result.status.value, reason=result.reason)


@router.get("/session", response_model=SessionResponse)
async def get_session(
    request: Request,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Refresh and return the current session and profile."""
    manager = await require_manager(request, session_id)
    try:
        session = await manager.refresh()
    except AuthError as e:
        raise to_http_exception(e)

    return SessionResponse(
        user=manager.profile.to_dict() if manager.profile else {},
        session={
            "id": session_id,
            "username": session.username,
            "expiresAt": datetime.fromtimestamp(
                session.expires_at, tz=timezone.utc
            ).isoformat(),
            "active": True,
        },
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutRequest] = None,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Terminate the session with the identity provider.

    With ``clear_local`` the caller's record is erased and the cookie cleared.
    """
    body = body or LogoutRequest()
    manager = await require_manager(request, session_id)
    try:
        await manager.logout(clear_local=body.clear_local)
    except AuthError as e:
        raise to_http_exception(e)

    if body.clear_local:
        get_session_registry(request).discard(session_id)
        response.delete_cookie(key=SESSION_COOKIE, path="/")
    return LogoutResponse(success=True, message="Logged out successfully")


# ============================================================
# Registration Endpoints
# ============================================================

@router.post("/register", response_model=RegistrationResponse)
async def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    _, manager, _ = await manager_for(request, response, session_id)
    fields = RegistrationFields(
        name=body.name,
        email=body.email,
        password=body.password,
        company=body.company,
    )
    try:
        result = await manager.register(fields, offer_type=body.offer_type)
    except AuthError as e:
        raise to_http_exception(e)
    return RegistrationResponse(
        status=result.status.value,
        next_step=result.next_step.value if result.next_step else None,
        error_message=result.error_message,
    )


@router.post("/confirm", response_model=RegistrationResponse)
async def confirm_registration(
    request: Request,
    response: Response,
    body: CodeRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    _, manager, _ = await manager_for(request, response, session_id)
    try:
        result = await manager.confirm_registration(body.code, identifier=body.email)
    except AuthError as e:
        raise to_http_exception(e)
    return RegistrationResponse(
        status=result.status.value,
        next_step=result.next_step.value if result.next_step else None,
        error_message=result.error_message,
    )


@router.post("/resend-code")
async def resend_code(
    request: Request,
    response: Response,
    body: EmailRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    _, manager, _ = await manager_for(request, response, session_id)
    try:
        delivery = await manager.resend_confirmation_code(identifier=body.email)
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True, "delivery": delivery}


# ============================================================
# Password Endpoints
# ============================================================

@router.post("/password/forgot")
async def forgot_password(
    request: Request,
    response: Response,
    body: EmailRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    _, manager, _ = await manager_for(request, response, session_id)
    try:
        delivery = await manager.forgot_password(identifier=body.email)
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True, "delivery": delivery}


@router.post("/password/confirm")
async def confirm_password(
    request: Request,
    response: Response,
    body: ConfirmPasswordRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    _, manager, _ = await manager_for(request, response, session_id)
    try:
        await manager.confirm_password(body.code, body.new_password, identifier=body.email)
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True}


@router.post("/password/change")
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    manager = await require_manager(request, session_id)
    try:
        await manager.change_password(body.old_password, body.new_password)
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True}


@router.post("/password/temporary")
async def change_temporary_password(
    request: Request,
    response: Response,
    body: TemporaryPasswordRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Replace an administrator-issued temporary password."""
    _, manager, _ = await manager_for(request, response, session_id)
    try:
        user = await manager.change_temporary_password(
            body.email, body.temporary_password, body.new_password
        )
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True, "user": user.model_dump() if user else None}


# ============================================================
# MFA Endpoints
# ============================================================

@router.get("/mfa/status")
async def mfa_status(
    request: Request,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    manager = await require_manager(request, session_id)
    try:
        enabled = await manager.fetch_mfa_status()
    except AuthError as e:
        raise to_http_exception(e)
    return {"enabled": enabled}


@router.post("/mfa/setup")
async def begin_mfa_setup(
    request: Request,
    body: MfaSetupRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    """Start software-token enrollment and return the provisioning secret."""
    email = await _account_email(request, session_id, body.email)
    try:
        provisioning = await get_mfa_service(request).begin(email, body.password)
    except AuthError as e:
        raise to_http_exception(e)
    return provisioning.model_dump()


@router.post("/mfa/setup/confirm")
async def confirm_mfa_setup(
    request: Request,
    body: MfaConfirmRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    email = await _account_email(request, session_id, body.email)
    try:
        await get_mfa_service(request).confirm(
            email, body.password, body.code, body.device_name, sms=body.sms
        )
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True}


@router.post("/mfa/disable")
async def disable_mfa(
    request: Request,
    body: MfaDisableRequest,
    session_id: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    email = await _account_email(request, session_id, body.email)
    try:
        await get_mfa_service(request).disable(email, body.password, body.code)
    except AuthError as e:
        raise to_http_exception(e)
    return {"success": True}
