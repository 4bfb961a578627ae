"""
Stripe checkout for token purchases.

Wraps the three Stripe calls the app needs: create a checkout session,
look one up, and verify a webhook payload. Routes only see
CheckoutSession and plain-dict events, never Stripe objects.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
import stripe
from cadogy.core.config import Settings
from cadogy.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


class WebhookSignatureError(Exception):
    pass


@dataclass
class CheckoutSession:
    id: str
    payment_status: str
    url: Optional[str] = None
    client_reference_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    # Smallest currency unit (cents)
    amount_total: Optional[int] = None
    customer_email: Optional[str] = None
    payment_intent: Optional[str] = None

    @classmethod
    def from_stripe(cls, data: dict[str, Any]) -> "CheckoutSession":
        customer_details = data.get("customer_details") or {}
        payment_intent = data.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        return cls(
            id=data["id"],
            payment_status=data.get("payment_status") or "unpaid",
            url=data.get("url"),
            client_reference_id=data.get("client_reference_id"),
            metadata=data.get("metadata") or {},
            amount_total=data.get("amount_total"),
            customer_email=customer_details.get("email") or data.get("customer_email"),
            payment_intent=payment_intent,
        )

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("userId") or self.client_reference_id

    @property
    def tokens(self) -> int:
        try:
            return int(self.metadata.get("tokens", 0))
        except (TypeError, ValueError):
            return 0

    @property
    def amount(self) -> float:
        return (self.amount_total or 0) / 100


class StripeGateway:
    """Stripe SDK calls made with this app's key rather than the global stripe.api_key"""

    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _require_key(self) -> None:
        if not self.secret_key:
            raise GatewayError("Payments are not configured")

    @staticmethod
    def _provider_error(action: str, error: stripe.StripeError) -> GatewayError:
        logger.error(f"Stripe {action} failed: {str(error)}")
        extra = {"providerStatus": error.http_status} if error.http_status else None
        return GatewayError(error.user_message or "Payment provider error", extra=extra)

    def create_checkout_session(
        self,
        *,
        user_id: int,
        email: str,
        tokens: int,
        amount: float,
        price_id: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        self._require_key()
        metadata = {"userId": str(user_id), "tokens": str(tokens)}
        if price_id:
            metadata["priceId"] = price_id
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                payment_method_types=["card"],
                billing_address_collection="required",
                customer_email=email,
                client_reference_id=str(user_id),
                metadata=metadata,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": "usd",
                        "unit_amount": round(amount * 100),
                        "product_data": {
                            "name": f"{tokens:,} Tokens",
                            "description": "Tokens for Cadogy API usage",
                        },
                    },
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                consent_collection={"terms_of_service": "required"},
            )
        except stripe.StripeError as e:
            raise self._provider_error("checkout creation", e)
        return CheckoutSession.from_stripe(session.to_dict())

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        self._require_key()
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, api_key=self.secret_key, expand=["payment_intent"]
            )
        except stripe.StripeError as e:
            raise self._provider_error(f"lookup of checkout session {session_id!r}", e)
        return CheckoutSession.from_stripe(session.to_dict())

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> dict:
        """Verify the Stripe-Signature header against the raw body and return the event as a dict"""
        if not signature_header or not self.webhook_secret:
            raise WebhookSignatureError("Missing signature")
        try:
            event = stripe.Webhook.construct_event(
                payload, signature_header, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e))
        except ValueError:
            raise WebhookSignatureError("Invalid payload")
        return event.to_dict()


def build_payment_gateway(settings: Settings) -> StripeGateway:
    return StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)
