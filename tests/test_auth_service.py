from datetime import timedelta
import pytest
from cadogy.core.exceptions import Conflict, Forbidden, InvalidOrExpiredToken
from cadogy.models.site_settings import SiteSettings
from cadogy.models.user import User
from cadogy.models.verification_token import VerificationToken
from cadogy.services.auth_service import (
    AuthOutcome,
    RESET_TOKEN_TTL,
    VERIFICATION_TOKEN_TTL,
    auth_service,
)
from cadogy.services.email_service import EmailService
from cadogy.utils.dates import utcnow
from tests.conftest import PASSWORD


@pytest.fixture
def email_service(outbox):
    return EmailService(outbox, "http://localhost:3000")


def test_authenticate_unknown_email(db):
    result = auth_service.authenticate(db, "nobody@example.com", PASSWORD)
    assert result.outcome is AuthOutcome.NOT_FOUND


def test_authenticate_account_without_password(db, make_user):
    make_user(email="oauth@example.com", password=None)
    result = auth_service.authenticate(db, "oauth@example.com", PASSWORD)
    assert result.outcome is AuthOutcome.NOT_FOUND


@pytest.mark.parametrize("password", [PASSWORD, "Wrong1234"])
def test_authenticate_unverified_regardless_of_password(db, make_user, password):
    make_user(email="new@example.com", verified=False)
    result = auth_service.authenticate(db, "new@example.com", password)
    assert result.outcome is AuthOutcome.UNVERIFIED


def test_authenticate_wrong_password(db, make_user):
    make_user(email="user@example.com")
    result = auth_service.authenticate(db, "user@example.com", "Wrong1234")
    assert result.outcome is AuthOutcome.INVALID_CREDENTIALS
    assert not result.ok


def test_authenticate_ok_is_case_insensitive_on_email(db, make_user):
    user = make_user(email="user@example.com")
    result = auth_service.authenticate(db, "User@Example.com", PASSWORD)
    assert result.ok
    assert result.user.id == user.id


def test_new_token_replaces_previous_one(db):
    first = auth_service.issue_token(db, "a@b.com", VERIFICATION_TOKEN_TTL)
    second = auth_service.issue_token(db, "a@b.com", RESET_TOKEN_TTL)

    assert auth_service.find_valid_token(db, first) is None
    assert auth_service.find_valid_token(db, second) is not None
    assert db.query(VerificationToken).filter(VerificationToken.identifier == "a@b.com").count() == 1


def test_tokens_for_other_identifiers_are_kept(db):
    other = auth_service.issue_token(db, "other@b.com", VERIFICATION_TOKEN_TTL)
    auth_service.issue_token(db, "a@b.com", VERIFICATION_TOKEN_TTL)
    assert auth_service.find_valid_token(db, other) is not None


def test_expired_token_does_not_verify_email(db, make_user):
    user = make_user(email="late@example.com", verified=False)
    token = auth_service.issue_token(db, "late@example.com", VERIFICATION_TOKEN_TTL)
    record = db.query(VerificationToken).filter(VerificationToken.token == token).one()
    record.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    with pytest.raises(InvalidOrExpiredToken):
        auth_service.verify_email(db, token)

    db.refresh(user)
    assert user.email_verified_at is None


def test_verify_email_consumes_token(db, make_user):
    user = make_user(email="fresh@example.com", verified=False)
    token = auth_service.issue_token(db, "fresh@example.com", VERIFICATION_TOKEN_TTL)

    auth_service.verify_email(db, token)

    db.refresh(user)
    assert user.email_verified_at is not None
    assert db.query(VerificationToken).count() == 0
    with pytest.raises(InvalidOrExpiredToken):
        auth_service.verify_email(db, token)


def test_register_sends_verification_email(db, email_service, outbox):
    user = auth_service.register(db, "a@b.com", PASSWORD, "Ann", email_service)

    assert user.email_verified_at is None
    assert user.role == "user"
    assert len(outbox.sent) == 1
    token = db.query(VerificationToken).filter(VerificationToken.identifier == "a@b.com").one().token
    assert f"/auth/verify-email?token={token}" in outbox.sent[0]["html"]


def test_register_duplicate_email_conflicts(db, email_service, make_user):
    make_user(email="a@b.com")
    with pytest.raises(Conflict):
        auth_service.register(db, "A@b.com", PASSWORD, None, email_service)
    assert db.query(User).filter(User.email == "a@b.com").count() == 1


def test_register_uses_default_token_balance(db, email_service):
    db.add(SiteSettings(default_token_balance=250))
    db.commit()
    user = auth_service.register(db, "a@b.com", PASSWORD, None, email_service)
    assert user.token_balance == 250


def test_register_refused_when_disabled(db, email_service):
    db.add(SiteSettings(registration_enabled=False))
    db.commit()
    with pytest.raises(Forbidden):
        auth_service.register(db, "a@b.com", PASSWORD, None, email_service)
    assert db.query(User).count() == 0


def test_password_reset_for_unknown_email_creates_nothing(db, email_service, outbox):
    auth_service.request_password_reset(db, "ghost@example.com", email_service)
    assert db.query(VerificationToken).count() == 0
    assert outbox.sent == []


def test_purge_expired_tokens(db):
    auth_service.issue_token(db, "keep@b.com", VERIFICATION_TOKEN_TTL)
    stale = auth_service.issue_token(db, "stale@b.com", VERIFICATION_TOKEN_TTL)
    record = db.query(VerificationToken).filter(VerificationToken.token == stale).one()
    record.expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    assert auth_service.purge_expired_tokens(db) == 1
    remaining = [t.identifier for t in db.query(VerificationToken).all()]
    assert remaining == ["keep@b.com"]
