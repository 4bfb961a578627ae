from typing import Optional
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from cadogy.core.config import Settings
from cadogy.core.database import get_db
from cadogy.core.exceptions import Forbidden, Unauthorized
from cadogy.core.security import decode_session_token
from cadogy.models.user import User, ROLE_ADMIN
from cadogy.services.captcha_service import CaptchaVerifier
from cadogy.services.email_service import EmailService
from cadogy.services.payment_service import StripeGateway

# Bearer scheme - extracts the token from the Authorization header when present.
# Browsers send the session cookie instead; both carry the same signed token
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


def get_captcha_verifier(request: Request) -> CaptchaVerifier:
    return request.app.state.captcha_verifier


def get_payment_gateway(request: Request) -> StripeGateway:
    return request.app.state.payment_gateway


def extract_session_token(request: Request, settings: Settings) -> Optional[str]:
    """Session token from the cookie, falling back to an Authorization: Bearer header"""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def read_session(request: Request, settings: Settings) -> Optional[dict]:
    """
    Verified claims of the request's session token, or None.

    Shared by the route guard and the dependencies below so both see the
    same session.
    """
    token = extract_session_token(request, settings)
    if not token:
        return None
    claims = decode_session_token(token, settings)
    if not claims or not claims.get("sub"):
        return None
    return claims


async def get_session_claims(
    request: Request,
    _token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> dict:
    claims = read_session(request, settings)
    if claims is None:
        raise Unauthorized("Please sign in to access this resource")
    return claims


async def get_current_user(
    claims: dict = Depends(get_session_claims),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the session token.

    If the token is invalid or the user was deleted after the token was
    issued, raises 401 Unauthorized.
    """
    # Token stores the id as a string, the database uses an integer
    try:
        user_id = int(claims["sub"])
    except (ValueError, TypeError):
        raise Unauthorized("Please sign in to access this resource")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise Unauthorized("Please sign in to access this resource")
    return user


async def require_admin(
    claims: dict = Depends(get_session_claims),
    current_user: User = Depends(get_current_user),
) -> User:
    # The role is the one frozen in the token at login
    if claims.get("role") != ROLE_ADMIN:
        raise Forbidden("You don't have permission to access this resource")
    return current_user
