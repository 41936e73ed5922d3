"""
Account routes: signup, login, token refresh, logout and password reset.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from kepka.auth import REFRESH, RESET, hash_password, verify_password
from kepka.db import UserRecord
from kepka.dependencies import (
    RequestContext,
    Services,
    get_current_user,
    get_request_context,
    get_services,
)
from kepka.errors import AuthError, Conflict, Forbidden
from kepka.routes.common import audit
from kepka.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    ResetPasswordRequest,
    SignupRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent"
)


def _password_fingerprint(user: UserRecord) -> str:
    # Binds a reset token to the hash it replaces, so it works once.
    return user.password_hash[-12:]


@router.post("/signup", status_code=201)
def signup(
    payload: SignupRequest,
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    db = services.db
    email = str(payload.email).lower()
    if db.get_user_by_email(email):
        raise Conflict("A user with this email already exists")
    admin_emails = {e.lower() for e in services.settings.admin_emails}
    user = db.create_user(
        email,
        hash_password(payload.password),
        payload.full_name,
        is_admin=email in admin_emails,
    )
    logger.info("User created: %s", user.email)
    audit(db, user, ctx, "signup", "user", user.id)
    services.notifier.notify("user_signup", {"name": user.full_name}, user.email)
    return {
        "message": "User created successfully",
        "user": user.as_dict(),
        "session": services.tokens.issue_pair(user.id),
    }


@router.post("/login")
def login(
    payload: LoginRequest,
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    user = services.db.get_user_by_email(str(payload.email))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise AuthError("Invalid email or password")
    if user.is_suspended:
        raise Forbidden("Account suspended")
    logger.info("User logged in: %s", user.email)
    audit(services.db, user, ctx, "login", "user", user.id)
    return {
        "message": "Login successful",
        "user": user.as_dict(),
        "session": services.tokens.issue_pair(user.id),
    }


@router.post("/refresh")
def refresh(payload: RefreshRequest, services: Services = Depends(get_services)):
    claims = services.tokens.decode(payload.refresh_token, REFRESH)
    user = services.db.get_user(claims["sub"])
    if user is None:
        raise AuthError("User not found")
    if user.is_suspended:
        raise Forbidden("Account suspended")
    return {
        "message": "Token refreshed successfully",
        "session": services.tokens.issue_pair(user.id),
    }


@router.post("/logout")
def logout(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    audit(services.db, user, ctx, "logout", "user", user.id)
    logger.info("User logged out: %s", user.email)
    return {"message": "Logout successful"}


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest, services: Services = Depends(get_services)
):
    user = services.db.get_user_by_email(str(payload.email))
    if user is not None and not user.is_suspended:
        token = services.tokens.issue(
            user.id, RESET, extra={"pwf": _password_fingerprint(user)}
        )
        reset_url = f"{services.settings.frontend_url}/reset-password?token={token}"
        services.notifier.notify("password_reset", {"reset_url": reset_url}, user.email)
        logger.info("Password reset requested for %s", user.email)
    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    claims = services.tokens.decode(payload.reset_token, RESET)
    user = services.db.get_user(claims["sub"])
    if user is None or claims.get("pwf") != _password_fingerprint(user):
        raise AuthError("Invalid or expired reset token")
    services.db.update_user(
        user.id,
        password_hash=hash_password(payload.new_password),
    )
    audit(services.db, user, ctx, "reset_password", "user", user.id)
    logger.info("Password reset for %s", user.email)
    return {"message": "Password updated successfully"}
