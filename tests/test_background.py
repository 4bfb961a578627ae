from datetime import timedelta
from cadogy.core.scheduler import purge_expired_tokens_job, start_scheduler
from cadogy.models.verification_token import VerificationToken
from cadogy.services.captcha_service import CaptchaVerifier, build_captcha_verifier
from cadogy.utils.dates import utcnow


def test_scheduler_disabled_by_settings(test_settings):
    assert start_scheduler(None, test_settings) is None


def test_purge_job_uses_its_own_session(client, db):
    now = utcnow()
    db.add(VerificationToken(identifier="old@example.com", token="a" * 64, expires_at=now - timedelta(hours=2)))
    db.add(VerificationToken(identifier="new@example.com", token="b" * 64, expires_at=now + timedelta(hours=2)))
    db.commit()

    purge_expired_tokens_job(client.app.state.session_factory)

    db.expire_all()
    assert [t.identifier for t in db.query(VerificationToken).all()] == ["new@example.com"]


def test_captcha_skipped_in_development(test_settings):
    settings = test_settings.model_copy(update={"ENVIRONMENT": "development", "TURNSTILE_SECRET_KEY": "secret"})
    assert build_captcha_verifier(settings).verify(None)


def test_captcha_without_token_fails_when_enabled():
    verifier = CaptchaVerifier("secret", enabled=True)
    assert not verifier.verify(None)
    assert not verifier.verify("")
