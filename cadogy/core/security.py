import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from cadogy.core.config import Settings

# CryptContext handles password hashing using bcrypt
# bcrypt salts every hash and is slow on purpose
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PASSWORD_MIN_LENGTH = 8

API_KEY_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
API_KEY_RANDOM_LENGTH = 32
API_KEY_PREFIXES = {
    "primary": "sk_primary_cadogy_",
    "secondary": "sk_secondary_cadogy_",
}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash using constant-time comparison"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt"""
    return pwd_context.hash(password)


def password_policy_error(password: str) -> Optional[str]:
    """
    Return the first password policy violation, or None when the password is acceptable.

    Policy: at least 8 characters with an upper-case letter, a lower-case
    letter and a digit.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None


def create_session_token(
    claims: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, datetime]:
    """
    Create a signed session token and return it with its expiry.

    The role and profile claims are frozen at issue time. A role change only
    shows up in a token issued after the change.
    """
    to_encode = claims.copy()

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.SESSION_MAX_AGE_DAYS))

    # exp/iat are the JWT standard claims; jose verifies exp on decode
    to_encode.update({"exp": expire, "iat": now})

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt, expire


def decode_session_token(token: str, settings: Settings) -> Optional[dict]:
    """Decode and verify a session token"""
    try:
        # Verify signature and expiration automatically
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        # Token is invalid - could be expired, tampered, or signed with another secret
        return None


def generate_verification_token() -> str:
    """32 random bytes, hex-encoded"""
    return secrets.token_hex(32)


def generate_api_key(key_type: str) -> str:
    """Generate a new API key string such as sk_primary_cadogy_<32 alphanumerics>"""
    prefix = API_KEY_PREFIXES[key_type]
    suffix = "".join(secrets.choice(API_KEY_ALPHABET) for _ in range(API_KEY_RANDOM_LENGTH))
    return f"{prefix}{suffix}"


def mask_api_key(key: str) -> str:
    """Show the first 16 characters only"""
    return key[:16] + "●" * 16
