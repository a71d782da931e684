from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


# Request schemas
class RegisterRequest(BaseModel):
    username: str = Field(..., max_length=30)
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)
    confirm_password: str = Field(..., max_length=128)
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)


class LoginRequest(BaseModel):
    username: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class RevokeRefreshTokenRequest(BaseModel):
    refresh_token: str


class ValidateTokenRequest(BaseModel):
    token: str


class UpdateProfileRequest(BaseModel):
    email: str = Field(..., max_length=254)
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., max_length=128)
    confirm_password: str = Field(..., max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., max_length=200)
    new_password: str = Field(..., max_length=128)
    confirm_password: str = Field(..., max_length=128)


class ValidatePasswordRequest(BaseModel):
    password: str = Field(..., max_length=128)


# Response schemas
class UserInfo(BaseModel):
    id: UUID
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    last_access: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserInfo


class TokenValidationResponse(BaseModel):
    valid: bool


class PasswordStrengthResponse(BaseModel):
    is_valid: bool
    score: int
    strength: str
    errors: List[str] = []
    recommendations: List[str] = []


class MessageResponse(BaseModel):
    message: str
