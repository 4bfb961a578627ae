import logging
import re
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from cadogy.api.dependencies import get_current_user, get_email_service, get_payment_gateway, get_settings
from cadogy.core.config import Settings
from cadogy.core.database import get_db
from cadogy.core.exceptions import Forbidden, ValidationFailed
from cadogy.models.user import User
from cadogy.services.email_service import EmailService
from cadogy.services.payment_service import CheckoutSession, StripeGateway, WebhookSignatureError
from cadogy.services.token_service import token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

CHECKOUT_SESSION_ID = re.compile(r"cs_[A-Za-z0-9_]+")


class CheckoutRequest(BaseModel):
    tokens: int = Field(gt=0)
    amount: float = Field(gt=0)
    price_id: Optional[str] = Field(default=None, alias="priceId")

    model_config = ConfigDict(populate_by_name=True)


@router.post("/create-checkout")
async def create_checkout(
    data: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    app_url = settings.APP_URL.rstrip("/")
    checkout = gateway.create_checkout_session(
        user_id=current_user.id,
        email=current_user.email,
        tokens=data.tokens,
        amount=data.amount,
        price_id=data.price_id,
        success_url=f"{app_url}/dashboard/tokens/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{app_url}/dashboard/tokens",
    )
    logger.info(f"Created checkout session {checkout.id} for user {current_user.id}")
    return {"sessionId": checkout.id, "url": checkout.url}


@router.get("/verify")
async def verify_payment(
    session_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    if not session_id:
        raise ValidationFailed("A Stripe session ID is required")
    if not CHECKOUT_SESSION_ID.fullmatch(session_id):
        raise ValidationFailed("Invalid Stripe session ID")

    checkout = gateway.retrieve_checkout_session(session_id)
    if checkout.user_id != str(current_user.id) and checkout.client_reference_id != str(current_user.id):
        raise Forbidden("This payment session does not belong to you")
    if checkout.payment_status != "paid":
        raise ValidationFailed(
            "The payment has not been completed yet. Please try again later.",
            extra={"status": checkout.payment_status},
        )

    return {
        "success": True,
        "sessionId": checkout.id,
        "paymentId": checkout.payment_intent,
        "tokens": checkout.tokens,
        "amount": checkout.amount,
    }


def handle_completed_checkout(db: Session, checkout: CheckoutSession, email_service: EmailService) -> None:
    """Credit the purchased tokens once and send the receipt"""
    try:
        user_id = int(checkout.user_id)
    except (TypeError, ValueError):
        logger.error(f"Missing or invalid user in checkout session {checkout.id}")
        return
    if checkout.tokens <= 0:
        logger.error(f"Invalid token amount in checkout session {checkout.id}")
        return

    transaction = token_service.credit_purchase(
        db, user_id, checkout.tokens, reference=checkout.id, reason="Token purchase"
    )
    if transaction is None:
        return

    recipient = checkout.customer_email
    if not recipient:
        user = db.query(User).filter(User.id == user_id).first()
        recipient = user.email if user else None
    if recipient:
        email_service.send_purchase_confirmation(
            recipient, checkout.tokens, transaction.new_balance, checkout.id, checkout.amount
        )


@webhook_router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    email_service: EmailService = Depends(get_email_service),
):
    # Signature is computed over the raw body, so read bytes before any parsing
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    except WebhookSignatureError as e:
        logger.warning(f"Stripe webhook verification failed: {str(e)}")
        raise ValidationFailed("Invalid signature")

    event_type = event.get("type")
    logger.info(f"Processing Stripe webhook event: {event_type}")

    if event_type == "checkout.session.completed":
        checkout = CheckoutSession.from_stripe(event["data"]["object"])
        if checkout.payment_status == "paid":
            handle_completed_checkout(db, checkout, email_service)
    else:
        logger.info(f"Unhandled Stripe event type: {event_type}")

    return {"received": True}
