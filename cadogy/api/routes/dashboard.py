from datetime import datetime
from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from sqlalchemy.orm import Session
from cadogy.api.dependencies import get_current_user
from cadogy.core.database import get_db
from cadogy.core.exceptions import ValidationFailed
from cadogy.core.security import mask_api_key
from cadogy.models.api_key import ApiKey
from cadogy.models.system_alert import SystemAlert
from cadogy.models.ticket import Ticket
from cadogy.models.user import User
from cadogy.services.alert_service import alert_service
from cadogy.services.api_key_service import api_key_service
from cadogy.services.ticket_service import ticket_service
from cadogy.services.usage_service import usage_service
from cadogy.utils.dates import isoformat

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: Literal["primary", "secondary"] = "primary"
    permissions: List[str] = Field(default_factory=lambda: ["read"])


class ApiKeyUpdate(BaseModel):
    id: int
    action: Literal["enable", "disable"]


class ApiKeyResponse(BaseModel):
    """Listing shape; `key` holds the masked value"""
    id: int
    name: str
    key: str
    type: str
    permissions: List[str]
    is_active: bool = Field(serialization_alias="isActive")
    last_used_at: Optional[datetime] = Field(serialization_alias="lastUsed")
    expires_at: Optional[datetime] = Field(serialization_alias="expiresAt")
    created_at: Optional[datetime] = Field(serialization_alias="createdAt")

    @field_serializer("last_used_at", "expires_at", "created_at")
    def serialize_dates(self, value: Optional[datetime], _info):
        return isoformat(value)


class TicketCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)
    category: Optional[Literal["technical", "billing", "general", "feature-request", "bug-report"]] = None
    priority: Optional[Literal["low", "medium", "high"]] = None


class TicketReply(BaseModel):
    content: str = Field(min_length=1)


class TicketSummary(BaseModel):
    id: int
    subject: str
    category: str
    priority: str
    status: str
    message_count: int = Field(serialization_alias="messageCount")
    last_reply_at: Optional[datetime] = Field(serialization_alias="lastReplyAt")
    last_reply_by: Optional[str] = Field(serialization_alias="lastReplyBy")
    created_at: Optional[datetime] = Field(serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("last_reply_at", "created_at", "updated_at")
    def serialize_dates(self, value: Optional[datetime], _info):
        return isoformat(value)


def api_key_payload(api_key: ApiKey, reveal: bool = False) -> dict:
    return ApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        key=api_key.key if reveal else mask_api_key(api_key.key),
        type=api_key.type,
        permissions=api_key.permissions or [],
        is_active=api_key.is_active,
        last_used_at=api_key.last_used_at,
        expires_at=api_key.expires_at,
        created_at=api_key.created_at,
    ).model_dump(by_alias=True)


def ticket_summary(ticket: Ticket) -> dict:
    return TicketSummary(
        id=ticket.id,
        subject=ticket.subject,
        category=ticket.category,
        priority=ticket.priority,
        status=ticket.status,
        message_count=len(ticket.messages),
        last_reply_at=ticket.last_reply_at,
        last_reply_by=ticket.last_reply_by,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    ).model_dump(by_alias=True)


def ticket_detail(db: Session, ticket: Ticket) -> dict:
    """Ticket with its messages; deleted authors show as "Unknown User" """
    authors = ticket_service.message_authors(db, ticket)
    payload = ticket_summary(ticket)
    messages = []
    for message in ticket.messages:
        author = authors.get(message.author_id)
        messages.append({
            "id": message.id,
            "author": {
                "userId": message.author_id,
                "name": (author.name or author.email) if author else "Unknown User",
                "role": author.role if author else "user",
                "image": author.image if author else None,
            },
            "content": message.content,
            "createdAt": isoformat(message.created_at),
        })
    payload["messages"] = messages
    return payload


# API keys
# -----------------------------

@router.get("/api-keys")
async def list_api_keys(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the caller's API keys with masked values"""
    keys = api_key_service.list_keys(db, current_user.id)
    return {"apiKeys": [api_key_payload(key) for key in keys]}


@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: ApiKeyCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    api_key = api_key_service.create_key(db, current_user.id, data.name.strip(), data.type, data.permissions)
    # The full key is returned once, at creation
    return {"apiKey": api_key_payload(api_key, reveal=True), "message": "API key created successfully"}


@router.patch("/api-keys")
async def update_api_key(
    data: ApiKeyUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    api_key = api_key_service.set_active(db, current_user.id, data.id, data.action)
    return {
        "success": True,
        "apiKey": api_key_payload(api_key),
        "message": f"API key {'enabled' if api_key.is_active else 'disabled'} successfully",
    }


@router.delete("/api-keys")
async def delete_api_key(
    id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if id is None:
        raise ValidationFailed("API key ID is required")
    api_key_service.delete_key(db, current_user.id, id)
    return {"success": True, "message": "API key deleted successfully"}


@router.get("/api-keys/reveal")
async def reveal_api_key(
    id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if id is None:
        raise ValidationFailed("API key ID is required")
    # Ownership is checked again here, not just session presence
    api_key = api_key_service.get_owned_key(db, current_user.id, id)
    return {"key": api_key.key}


# Tickets
# -----------------------------

@router.get("/tickets")
async def list_tickets(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    tickets = ticket_service.list_user_tickets(db, current_user.id)
    return {"tickets": [ticket_summary(ticket) for ticket in tickets]}


@router.post("/tickets", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.create_ticket(
        db, current_user.id, data.subject.strip(), data.message, data.category, data.priority
    )
    return {"ticket": ticket_summary(ticket), "message": "Ticket created successfully"}


@router.get("/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.get_ticket(db, ticket_id, user_id=current_user.id)
    return {"ticket": ticket_detail(db, ticket)}


@router.post("/tickets/{ticket_id}/reply", status_code=status.HTTP_201_CREATED)
async def reply_to_ticket(
    ticket_id: int,
    data: TicketReply,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.get_ticket(db, ticket_id, user_id=current_user.id)
    ticket_service.add_reply(db, ticket, current_user.id, data.content, by="user")
    return {"ticket": ticket_detail(db, ticket), "message": "Reply added successfully"}


# Usage
# -----------------------------

def alert_payload(alert: SystemAlert) -> dict:
    return {
        "id": alert.id,
        "title": alert.title,
        "description": alert.description,
        "severity": alert.severity,
        "type": alert.type,
        "link": alert.link,
        "linkText": alert.link_text,
        "startDate": isoformat(alert.start_date),
        "endDate": isoformat(alert.end_date),
    }


@router.get("/usage")
async def get_usage(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Everything the usage page shows in one response"""
    default_key = api_key_service.get_default_key(db, current_user.id)
    alerts = alert_service.active_alerts(db, current_user.id)
    return {
        "user": {
            "id": current_user.id,
            "name": current_user.name,
            "email": current_user.email,
            "registeredAt": isoformat(current_user.created_at),
            "tokenBalance": current_user.token_balance or 0,
        },
        "usageStats": usage_service.user_stats(db, current_user.id),
        "apiKey": api_key_payload(default_key) if default_key else None,
        "alerts": [alert_payload(alert) for alert in alerts],
    }
