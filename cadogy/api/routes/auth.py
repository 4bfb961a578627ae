import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator, model_validator
from sqlalchemy.orm import Session
from cadogy.api.dependencies import get_captcha_verifier, get_email_service, get_settings, read_session
from cadogy.core.config import Settings
from cadogy.core.database import get_db
from cadogy.core.exceptions import NotFound, Unauthorized, Unverified, ValidationFailed
from cadogy.core.security import create_session_token, password_policy_error
from cadogy.models.user import User
from cadogy.services.auth_service import AuthOutcome, auth_service
from cadogy.services.captcha_service import CaptchaVerifier
from cadogy.services.email_service import EmailService
from cadogy.utils.dates import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

GENERIC_RESET_MESSAGE = "If an account with that email exists, we've sent password reset instructions"
GENERIC_RESEND_MESSAGE = "If an account with that email exists, a verification email has been sent"


def _check_password_policy(value: str) -> str:
    error = password_policy_error(value)
    if error:
        raise ValueError(error)
    return value


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    turnstile_token: Optional[str] = Field(default=None, alias="turnstileToken")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


class CredentialsRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    turnstile_token: Optional[str] = Field(default=None, alias="turnstileToken")

    model_config = ConfigDict(populate_by_name=True)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str
    confirm_password: str = Field(alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str]
    image: Optional[str]
    role: str
    email_verified_at: Optional[datetime] = Field(serialization_alias="emailVerified")

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("email_verified_at")
    def serialize_email_verified_at(self, value: Optional[datetime], _info):
        return isoformat(value)


def session_claims(user: User) -> dict:
    return {
        "sub": str(user.id),
        "role": user.role,
        "name": user.name,
        "email": user.email,
        "image": user.image,
    }


def _user_payload(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True)


def _require_captcha(captcha: CaptchaVerifier, token: Optional[str]) -> None:
    if not captcha.verify(token):
        raise ValidationFailed("Captcha verification failed. Please try again.")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """Register a new user and send the verification email"""
    _require_captcha(captcha, data.turnstile_token)
    user = auth_service.register(db, data.email, data.password, data.name, email_service)
    return {
        "message": "User registered successfully. Please check your email to verify your account.",
        "user": _user_payload(user),
    }


@router.get("/verify-email")
async def verify_email(token: Optional[str] = Query(None), db: Session = Depends(get_db)):
    if not token:
        raise ValidationFailed("Missing token")
    auth_service.verify_email(db, token)
    return {"success": True, "message": "Email verified successfully"}


@router.post("/forgot-password")
async def forgot_password(
    data: EmailRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    # Same response whether or not the account exists
    auth_service.request_password_reset(db, data.email, email_service)
    return {"message": GENERIC_RESET_MESSAGE}


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, db: Session = Depends(get_db)):
    auth_service.reset_password(db, data.token, data.password)
    return {"message": "Password has been reset successfully"}


@router.post("/resend-verification")
async def resend_verification(
    data: EmailRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    auth_service.resend_verification(db, data.email, email_service)
    return {"message": GENERIC_RESEND_MESSAGE}


@router.post("/validate-login")
async def validate_login(
    data: CredentialsRequest,
    db: Session = Depends(get_db),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """Pre-login check used by the login form to tell unverified accounts apart"""
    _require_captcha(captcha, data.turnstile_token)
    result = auth_service.authenticate(db, data.email, data.password)
    if result.outcome is AuthOutcome.UNVERIFIED:
        raise Unverified(result.user.email)
    if not result.ok:
        raise ValidationFailed("Invalid email or password")
    return {"verified": True}


@router.post("/login")
async def login(
    data: CredentialsRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Check credentials, set the session cookie and return the session token"""
    result = auth_service.authenticate(db, data.email, data.password)
    if result.outcome is AuthOutcome.NOT_FOUND:
        raise NotFound("No user found with this email")
    if result.outcome is AuthOutcome.UNVERIFIED:
        raise Unverified(result.user.email)
    if result.outcome is AuthOutcome.INVALID_CREDENTIALS:
        raise Unauthorized("Invalid password")

    user = result.user
    token, expires_at = create_session_token(session_claims(user), settings)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_MAX_AGE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )
    logger.info(f"User {user.id} signed in")
    return {
        "user": _user_payload(user),
        "accessToken": token,
        "tokenType": "bearer",
        "expiresAt": expires_at.isoformat(),
    }


@router.post("/logout")
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    # Tokens are stateless; signing out only drops the cookie
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    return {"message": "Signed out"}


@router.get("/session")
async def get_session(request: Request, settings: Settings = Depends(get_settings)):
    claims = read_session(request, settings)
    if claims is None:
        raise Unauthorized("Not signed in")
    return {
        "user": {
            "id": claims["sub"],
            "name": claims.get("name"),
            "email": claims.get("email"),
            "image": claims.get("image"),
            "role": claims.get("role"),
        },
        "expires": datetime.fromtimestamp(claims["exp"], tz=timezone.utc).isoformat(),
    }
