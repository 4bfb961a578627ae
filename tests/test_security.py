import json
import time
from datetime import timedelta
import pytest
from cadogy.core.security import (
    create_session_token,
    decode_session_token,
    generate_api_key,
    generate_verification_token,
    get_password_hash,
    mask_api_key,
    password_policy_error,
    verify_password,
)
from cadogy.services.payment_service import StripeGateway, WebhookSignatureError
from tests.conftest import stripe_signature


@pytest.mark.parametrize("password, expected", [
    ("Ab1", "Password must be at least 8 characters long"),
    ("abcd1234", "Password must contain at least one uppercase letter"),
    ("ABCD1234", "Password must contain at least one lowercase letter"),
    ("Abcdefgh", "Password must contain at least one number"),
    ("Abcd1234", None),
])
def test_password_policy(password, expected):
    assert password_policy_error(password) == expected


def test_password_hash_round_trip():
    hashed = get_password_hash("Abcd1234")
    assert hashed != "Abcd1234"
    assert verify_password("Abcd1234", hashed)
    assert not verify_password("Abcd12345", hashed)


def test_session_token_carries_claims(test_settings):
    token, expires_at = create_session_token({"sub": "7", "role": "admin"}, test_settings)
    claims = decode_session_token(token, test_settings)
    assert claims["sub"] == "7"
    assert claims["role"] == "admin"
    assert claims["exp"] == int(expires_at.timestamp())
    # 30-day absolute lifetime
    assert claims["exp"] - claims["iat"] == 30 * 24 * 60 * 60


def test_expired_session_token_is_rejected(test_settings):
    token, _ = create_session_token({"sub": "7"}, test_settings, expires_delta=timedelta(seconds=-10))
    assert decode_session_token(token, test_settings) is None


def test_session_token_signed_with_other_secret_is_rejected(test_settings):
    other = test_settings.model_copy(update={"SECRET_KEY": "another-secret"})
    token, _ = create_session_token({"sub": "7"}, other)
    assert decode_session_token(token, test_settings) is None


def test_verification_token_is_64_hex_chars():
    token = generate_verification_token()
    assert len(token) == 64
    int(token, 16)
    assert generate_verification_token() != token


def test_api_key_format_and_mask():
    primary = generate_api_key("primary")
    secondary = generate_api_key("secondary")
    assert primary.startswith("sk_primary_cadogy_")
    assert len(primary) == len("sk_primary_cadogy_") + 32
    assert secondary.startswith("sk_secondary_cadogy_")
    assert primary[len("sk_primary_cadogy_"):].isalnum()

    masked = mask_api_key(primary)
    assert masked.startswith(primary[:16])
    assert primary[16:] not in masked
    assert masked.endswith("●" * 16)


@pytest.fixture
def webhook_gateway():
    return StripeGateway("sk_test", "whsec")


def test_webhook_signature_accepts_valid_payload(webhook_gateway):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}).encode()
    event = webhook_gateway.construct_event(payload, stripe_signature(payload, "whsec"))
    assert event["type"] == "checkout.session.completed"
    assert event["data"]["object"]["id"] == "cs_1"


def test_webhook_signature_rejects_tampered_payload(webhook_gateway):
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
    header = stripe_signature(payload, "whsec")
    with pytest.raises(WebhookSignatureError):
        webhook_gateway.construct_event(b'{"id": "evt_1", "type": "other"}', header)


def test_webhook_signature_rejects_wrong_secret(webhook_gateway):
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
    with pytest.raises(WebhookSignatureError):
        webhook_gateway.construct_event(payload, stripe_signature(payload, "whsec_other"))


def test_webhook_signature_rejects_stale_timestamp(webhook_gateway):
    payload = b'{"id": "evt_1"}'
    old = int(time.time()) - 301
    with pytest.raises(WebhookSignatureError):
        webhook_gateway.construct_event(payload, stripe_signature(payload, "whsec", old))


@pytest.mark.parametrize("header", [None, "", "garbage", "t=123"])
def test_webhook_signature_rejects_malformed_header(webhook_gateway, header):
    with pytest.raises(WebhookSignatureError):
        webhook_gateway.construct_event(b"{}", header)


def test_webhook_without_secret_is_refused():
    payload = b'{"id": "evt_1"}'
    with pytest.raises(WebhookSignatureError):
        StripeGateway("sk_test", "").construct_event(payload, stripe_signature(payload, "whsec"))
