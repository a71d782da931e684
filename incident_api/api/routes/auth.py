from typing import Optional

from fastapi import APIRouter, Depends, status, Request

from incident_api.api.deps import get_access_token, get_auth_service, get_current_user
from incident_api.core.password_policy import recommendations_for, validate_password
from incident_api.core.rate_limit import (
    limiter,
    FORGOT_PASSWORD_LIMIT,
    LOGIN_LIMIT,
    REFRESH_LIMIT,
    REGISTER_LIMIT,
)
from incident_api.models import User
from incident_api.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordStrengthResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    RevokeRefreshTokenRequest,
    TokenValidationResponse,
    UpdateProfileRequest,
    UserInfo,
    ValidatePasswordRequest,
    ValidateTokenRequest,
)
from incident_api.services.auth_service import AuthResult, AuthService


router = APIRouter(prefix="/auth", tags=["Authentication"])


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_at=result.expires_at,
        user=UserInfo.model_validate(result.user),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(REGISTER_LIMIT)
def register(
    request: Request,
    data: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Create a user account and sign it in.
    Returns an access/refresh token pair and the user profile.
    """
    return _auth_response(auth_service.register(data))


@router.post("/login", response_model=AuthResponse)
@limiter.limit(LOGIN_LIMIT)
def login(
    request: Request,
    data: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate with username and password.
    Repeated failures lock the account for a while (423).
    """
    return _auth_response(auth_service.login(data.username, data.password))


@router.post("/refresh", response_model=AuthResponse)
@limiter.limit(REFRESH_LIMIT)
def refresh_token(
    request: Request,
    data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Exchange a refresh token for a new token pair.
    The presented refresh token is revoked (rotation).
    """
    return _auth_response(auth_service.refresh(data.refresh_token))


@router.post("/logout", response_model=MessageResponse)
def logout(
    data: Optional[LogoutRequest] = None,
    access_token: str = Depends(get_access_token),
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Revoke the current access token and, if supplied, the session's refresh token.
    """
    auth_service.logout(
        current_user.id,
        access_token,
        data.refresh_token if data else None,
    )
    return MessageResponse(message="Successfully logged out")


@router.post("/revoke-refresh-token", response_model=MessageResponse)
def revoke_refresh_token(
    data: RevokeRefreshTokenRequest,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke one of the current user's refresh tokens."""
    auth_service.revoke_refresh_token(current_user.id, data.refresh_token)
    return MessageResponse(message="Refresh token revoked")


@router.post("/revoke-all", response_model=MessageResponse)
def revoke_all_tokens(
    access_token: str = Depends(get_access_token),
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Sign out of every device."""
    count = auth_service.revoke_all_tokens(current_user.id, access_token)
    return MessageResponse(message=f"Revoked {count} sessions")


@router.get("/me", response_model=UserInfo)
def get_me(
    current_user: User = Depends(get_current_user),
):
    """Get current user info."""
    return UserInfo.model_validate(current_user)


@router.post("/validate", response_model=TokenValidationResponse)
def validate_token(
    data: ValidateTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Check whether an access token is valid and not revoked."""
    return TokenValidationResponse(valid=auth_service.validate_token(data.token))


@router.put("/profile", response_model=UserInfo)
def update_profile(
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = auth_service.update_profile(current_user.id, data)
    return UserInfo.model_validate(user)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Change the current user's password.
    Every refresh token of the user is revoked afterwards.
    """
    auth_service.change_password(current_user.id, data)
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(FORGOT_PASSWORD_LIMIT)
def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Send a password reset link.
    The response is the same whether or not the address is registered.
    """
    auth_service.request_password_reset(data.email)
    return MessageResponse(
        message="If an account with that email exists, a password reset link has been sent"
    )


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    data: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.reset_password(data)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/validate-password", response_model=PasswordStrengthResponse)
def validate_password_strength(data: ValidatePasswordRequest):
    """Score a candidate password without storing anything."""
    result = validate_password(data.password)
    return PasswordStrengthResponse(
        is_valid=result.is_valid,
        score=result.score,
        strength=result.strength.name,
        errors=result.errors,
        recommendations=recommendations_for(result),
    )


@router.delete("/me", response_model=MessageResponse)
def delete_account(
    access_token: str = Depends(get_access_token),
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Delete the current account and revoke all of its tokens."""
    auth_service.delete_user(current_user.id, access_token)
    return MessageResponse(message="Account deleted")
