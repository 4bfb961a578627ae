import logging
from typing import Protocol
import httpx
from cadogy.core.config import Settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html: str) -> bool:
        ...


class ResendEmailSender:
    """Deliver email through the Resend HTTP API"""

    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> bool:
        try:
            response = httpx.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.from_email, "to": [to], "subject": subject, "html": html},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            # Delivery failures never fail the request that triggered them
            logger.error(f"Failed to send email '{subject}' to {to}: {str(e)}")
            return False


class LogEmailSender:
    """Development sender: writes the message to the log instead of delivering it"""

    def send(self, to: str, subject: str, html: str) -> bool:
        logger.info(f"Email to {to} - {subject}: {html}")
        return True


class EmailService:
    """Builds the account emails and hands them to an EmailSender"""

    def __init__(self, sender: EmailSender, app_url: str):
        self.sender = sender
        self.app_url = app_url.rstrip("/")

    def verification_link(self, token: str) -> str:
        # Old-style link; the route guard redirects it to /verify-email
        return f"{self.app_url}/auth/verify-email?token={token}"

    def reset_link(self, token: str) -> str:
        return f"{self.app_url}/auth/reset-password?token={token}"

    def send_verification_email(self, email: str, token: str) -> bool:
        link = self.verification_link(token)
        html = (
            "<div><h1>Verify your email address</h1>"
            "<p>Click the link below to verify your email:</p>"
            f'<a href="{link}">Verify Email</a></div>'
        )
        return self.sender.send(email, "Verify your email address", html)

    def send_password_reset_email(self, email: str, token: str) -> bool:
        link = self.reset_link(token)
        html = (
            "<div><h1>Reset your password</h1>"
            "<p>Click the link below to reset your password:</p>"
            f'<a href="{link}">Reset Password</a></div>'
        )
        return self.sender.send(email, "Reset your password", html)

    def send_purchase_confirmation(self, email: str, tokens: int, new_balance: int, order_id: str, amount: float) -> bool:
        html = (
            "<div><h1>Thank you for your purchase</h1>"
            f"<p>{tokens:,} tokens were added to your account.</p>"
            f"<p>New balance: {new_balance:,} tokens</p>"
            f"<p>Order: {order_id} - ${amount:.2f}</p></div>"
        )
        return self.sender.send(email, "Cadogy - Token Purchase Confirmation", html)


def build_email_service(settings: Settings) -> EmailService:
    if settings.RESEND_API_KEY:
        sender = ResendEmailSender(settings.RESEND_API_KEY, settings.FROM_EMAIL)
    else:
        sender = LogEmailSender()
    return EmailService(sender, settings.APP_URL)
