"""
Credential authentication and the email token flows.

Verification and password-reset tokens share one table. Issuing a token
for an email deletes every earlier token for that email, so at most one
token per identifier can be valid at a time.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from cadogy.core.exceptions import Conflict, Forbidden, InvalidOrExpiredToken, NotFound, ValidationFailed
from cadogy.core.security import generate_verification_token, get_password_hash, verify_password
from cadogy.models.user import User, ROLE_USER
from cadogy.models.verification_token import VerificationToken
from cadogy.services.email_service import EmailService
from cadogy.services.settings_service import settings_service
from cadogy.utils.dates import utcnow

logger = logging.getLogger(__name__)

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)


class AuthOutcome(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNVERIFIED = "unverified"
    INVALID_CREDENTIALS = "invalid_credentials"


@dataclass
class AuthResult:
    outcome: AuthOutcome
    user: Optional[User] = None

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.OK


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    @staticmethod
    def authenticate(db: Session, email: str, password: str) -> AuthResult:
        """
        Check credentials without side effects.

        The checks run in a fixed order: unknown email, unverified email,
        wrong password. An unverified account is refused even with the
        right password.
        """
        user = db.query(User).filter(User.email == normalize_email(email)).first()
        # Accounts from an external identity provider have no password to check
        if user is None or not user.hashed_password:
            return AuthResult(AuthOutcome.NOT_FOUND)
        if user.email_verified_at is None:
            return AuthResult(AuthOutcome.UNVERIFIED, user)
        if not verify_password(password, user.hashed_password):
            return AuthResult(AuthOutcome.INVALID_CREDENTIALS, user)
        return AuthResult(AuthOutcome.OK, user)

    @staticmethod
    def issue_token(db: Session, identifier: str, ttl: timedelta) -> str:
        """Replace any tokens for `identifier` with a fresh one and return it"""
        db.query(VerificationToken).filter(VerificationToken.identifier == identifier).delete(
            synchronize_session=False
        )
        token = generate_verification_token()
        db.add(VerificationToken(identifier=identifier, token=token, expires_at=utcnow() + ttl))
        db.commit()
        return token

    @staticmethod
    def find_valid_token(db: Session, token: str) -> Optional[VerificationToken]:
        # Expiry is compared in SQL; a token at exactly expires_at is already invalid
        return (
            db.query(VerificationToken)
            .filter(VerificationToken.token == token, VerificationToken.expires_at > utcnow())
            .first()
        )

    @staticmethod
    def register(
        db: Session,
        email: str,
        password: str,
        name: Optional[str],
        email_service: EmailService,
    ) -> User:
        if not settings_service.registration_enabled(db):
            raise Forbidden("Registration is currently disabled")

        email = normalize_email(email)
        if db.query(User).filter(User.email == email).first():
            raise Conflict("User with this email already exists")

        user = User(
            email=email,
            hashed_password=get_password_hash(password),
            name=name,
            role=ROLE_USER,
            email_verified_at=None,
            token_balance=settings_service.default_token_balance(db),
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Two registrations for the same email raced past the lookup above
            db.rollback()
            raise Conflict("User with this email already exists")
        db.refresh(user)

        token = AuthService.issue_token(db, email, VERIFICATION_TOKEN_TTL)
        if not email_service.send_verification_email(email, token):
            logger.warning(f"Verification email to {email} was not delivered; user {user.id} can request a resend")
        logger.info(f"Registered user {user.id}")
        return user

    @staticmethod
    def verify_email(db: Session, token: str) -> User:
        if not token:
            raise ValidationFailed("Missing token")

        record = AuthService.find_valid_token(db, token)
        if record is None:
            raise InvalidOrExpiredToken()

        user = db.query(User).filter(User.email == record.identifier).first()
        if user is None:
            raise NotFound("User not found")

        user.email_verified_at = utcnow()
        db.delete(record)
        db.commit()
        db.refresh(user)
        logger.info(f"Email verified for user {user.id}")
        return user

    @staticmethod
    def request_password_reset(db: Session, email: str, email_service: EmailService) -> None:
        """Issue a reset token when the account exists. Unknown emails are a silent no-op."""
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            return

        token = AuthService.issue_token(db, email, RESET_TOKEN_TTL)
        if not email_service.send_password_reset_email(email, token):
            logger.warning(f"Password reset email for user {user.id} was not delivered")

    @staticmethod
    def reset_password(db: Session, token: str, password: str) -> User:
        """Password policy and confirmation are validated by the request schema before this runs"""
        record = AuthService.find_valid_token(db, token)
        if record is None:
            raise InvalidOrExpiredToken()

        user = db.query(User).filter(User.email == record.identifier).first()
        if user is None:
            raise NotFound("User not found")

        user.hashed_password = get_password_hash(password)
        db.delete(record)
        db.commit()
        logger.info(f"Password reset for user {user.id}")
        return user

    @staticmethod
    def resend_verification(db: Session, email: str, email_service: EmailService) -> None:
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            return
        if user.email_verified_at is not None:
            raise ValidationFailed("Email is already verified")

        token = AuthService.issue_token(db, email, VERIFICATION_TOKEN_TTL)
        if not email_service.send_verification_email(email, token):
            logger.warning(f"Verification email resend for user {user.id} was not delivered")

    @staticmethod
    def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
        if not user.hashed_password:
            raise ValidationFailed("This account does not use a password")
        if not verify_password(current_password, user.hashed_password):
            raise ValidationFailed("Current password is incorrect")
        user.hashed_password = get_password_hash(new_password)
        db.commit()

    @staticmethod
    def purge_expired_tokens(db: Session) -> int:
        deleted = (
            db.query(VerificationToken)
            .filter(VerificationToken.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted


auth_service = AuthService()
