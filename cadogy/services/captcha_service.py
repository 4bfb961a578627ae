import logging
from typing import Optional
import httpx
from cadogy.core.config import Settings

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class CaptchaVerifier:
    """Cloudflare Turnstile check used by registration and the login pre-check"""

    def __init__(self, secret_key: str, enabled: bool, timeout: float = 10.0):
        self.secret_key = secret_key
        self.enabled = enabled and bool(secret_key)
        self.timeout = timeout

    def verify(self, token: Optional[str]) -> bool:
        if not self.enabled:
            return True
        if not token:
            return False
        try:
            response = httpx.post(
                TURNSTILE_VERIFY_URL,
                data={"secret": self.secret_key, "response": token},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error verifying Turnstile token: {str(e)}")
            return False


def build_captcha_verifier(settings: Settings) -> CaptchaVerifier:
    # Development environments never call out to Cloudflare
    return CaptchaVerifier(settings.TURNSTILE_SECRET_KEY, enabled=settings.ENVIRONMENT != "development")
