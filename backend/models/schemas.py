from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# User Schemas
class UserBase(BaseModel):
    email: EmailStr
    display_name: str


class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=128)


class User(UserBase):
    id: str
    is_active: bool
    totp_enabled: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# Token Schemas
class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    user_id: Optional[str] = None


# ============================================================================
# 2FA Schemas
# ============================================================================


class TwoFactorSetupResponse(BaseModel):
    """Response for 2FA setup initiation."""

    model_config = ConfigDict(populate_by_name=True)

    secret: str = Field(..., description="Base32-encoded TOTP secret for manual entry")
    qr_code: str = Field(
        ..., alias="qrCode", description="PNG QR code as a data: URI"
    )
    provisioning_uri: str = Field(
        ..., alias="provisioningUri", description="otpauth:// URI encoded in the QR code"
    )


class TwoFactorCodeRequest(BaseModel):
    """Body carrying a TOTP code from the authenticator app."""

    token: str = Field(
        ...,
        min_length=1,
        max_length=16,
        description="6-digit TOTP code from authenticator app",
    )


class TwoFactorEnabledResponse(BaseModel):
    """Response after successful 2FA setup."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    recovery_codes: List[str] = Field(
        ...,
        alias="recoveryCodes",
        description="One-time recovery codes (shown once, cannot be retrieved again)",
    )


class TwoFactorTokenVerifyRequest(BaseModel):
    """Login-time TOTP verification."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    token: str = Field(..., min_length=1, max_length=16)
    temp_token: Optional[str] = Field(
        default=None,
        alias="tempToken",
        description="Temp token from /auth/login; when present an access token is issued",
    )


class TwoFactorRecoveryVerifyRequest(BaseModel):
    """Login-time recovery code verification."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    code: str = Field(..., min_length=1, max_length=32)
    temp_token: Optional[str] = Field(default=None, alias="tempToken")


class TwoFactorVerifiedResponse(BaseModel):
    """Successful login-time verification."""

    verified: bool = True
    access_token: Optional[str] = None
    token_type: Optional[str] = None


class TwoFactorRequiredResponse(BaseModel):
    """Response when 2FA is required to complete login."""

    requires_2fa: bool = True
    temp_token: str = Field(..., description="Temp token for the 2FA verification step")
    user_id: str
    message: str = "Two-factor authentication required"


class TwoFactorStatusResponse(BaseModel):
    """2FA status for current user."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    pending: bool = False
    recovery_codes_remaining: int = Field(default=0, alias="recoveryCodesRemaining")


class RecoveryCodesResponse(BaseModel):
    """Response with a freshly generated set of recovery codes."""

    model_config = ConfigDict(populate_by_name=True)

    recovery_codes: List[str] = Field(..., alias="recoveryCodes")


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
