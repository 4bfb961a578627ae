import logging
from datetime import datetime
from typing import Literal, Optional, Union
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer
from sqlalchemy.orm import Session
from cadogy.api.dependencies import require_admin
from cadogy.api.routes.dashboard import alert_payload, ticket_detail, ticket_summary
from cadogy.core.database import get_db
from cadogy.core.exceptions import NotFound, ValidationFailed
from cadogy.models.site_settings import SiteSettings
from cadogy.models.token_transaction import TokenTransaction
from cadogy.models.user import User
from cadogy.services.alert_service import alert_service
from cadogy.services.settings_service import settings_service
from cadogy.services.ticket_service import ticket_service
from cadogy.services.token_service import token_service
from cadogy.services.usage_service import usage_service
from cadogy.services.user_service import user_service
from cadogy.utils.dates import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

RoleName = Literal["user", "admin"]


class AdminUserResponse(BaseModel):
    id: int
    name: Optional[str]
    email: str
    role: str
    email_verified_at: Optional[datetime] = Field(serialization_alias="emailVerified")
    token_balance: int = Field(serialization_alias="tokenBalance")
    created_at: Optional[datetime] = Field(serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("email_verified_at", "created_at", "updated_at")
    def serialize_dates(self, value: Optional[datetime], _info):
        return isoformat(value)


class AdminUserCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    role: Optional[RoleName] = None
    token_balance: int = Field(default=0, ge=0, alias="tokenBalance")
    password: Optional[str] = Field(default=None, min_length=8)

    model_config = ConfigDict(populate_by_name=True)


class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[RoleName] = None
    token_balance: Optional[int] = Field(default=None, ge=0, alias="tokenBalance")

    model_config = ConfigDict(populate_by_name=True)


class TicketUpdate(BaseModel):
    status: Optional[Literal["open", "in-progress", "resolved", "closed"]] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    category: Optional[Literal["technical", "billing", "general", "feature-request", "bug-report"]] = None


class TicketReply(BaseModel):
    content: str = Field(min_length=1)


class TokenAdjust(BaseModel):
    user_id: int = Field(alias="userId")
    operation: Literal["add", "deduct", "set"]
    amount: int = Field(ge=0)
    reason: str = Field(default="", max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class BulkTokenAdjust(BaseModel):
    operation: Literal["add", "deduct", "set", "multiply"]
    # Whole tokens for add/deduct/set, a factor for multiply
    amount: Union[int, float] = Field(ge=0)
    role: Optional[RoleName] = None
    reason: str = Field(default="", max_length=500)


class AlertCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    severity: Literal["info", "warning", "error"] = "info"
    type: Literal["system", "user"] = "system"
    user_id: Optional[int] = Field(default=None, alias="userId")
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    link: Optional[str] = None
    link_text: Optional[str] = Field(default=None, alias="linkText")

    model_config = ConfigDict(populate_by_name=True)


class SiteSettingsUpdate(BaseModel):
    registration_enabled: Optional[bool] = Field(default=None, alias="registrationEnabled")
    maintenance_mode: Optional[bool] = Field(default=None, alias="maintenanceMode")
    dashboard_background_image: Optional[str] = Field(default=None, alias="dashboardBackgroundImage")
    dashboard_background_opacity: Optional[float] = Field(default=None, alias="dashboardBackgroundOpacity")
    site_name: Optional[str] = Field(default=None, alias="siteName")
    site_slogan: Optional[str] = Field(default=None, alias="siteSlogan")
    site_description: Optional[str] = Field(default=None, alias="siteDescription")
    footer_description: Optional[str] = Field(default=None, alias="footerDescription")
    contact_email: Optional[str] = Field(default=None, alias="contactEmail")
    contact_address: Optional[str] = Field(default=None, alias="contactAddress")
    social_instagram: Optional[str] = Field(default=None, alias="socialInstagram")
    social_github: Optional[str] = Field(default=None, alias="socialGithub")
    social_linkedin: Optional[str] = Field(default=None, alias="socialLinkedin")
    default_token_balance: Optional[int] = Field(default=None, alias="defaultTokenBalance")
    max_file_upload_size: Optional[int] = Field(default=None, gt=0, alias="maxFileUploadSize")

    model_config = ConfigDict(populate_by_name=True)


def user_payload(user: User) -> dict:
    return AdminUserResponse.model_validate(user).model_dump(by_alias=True)


def site_settings_payload(site_settings: SiteSettings) -> dict:
    return {
        "registrationEnabled": site_settings.registration_enabled,
        "maintenanceMode": site_settings.maintenance_mode,
        "dashboardBackgroundImage": site_settings.dashboard_background_image,
        "dashboardBackgroundOpacity": site_settings.dashboard_background_opacity,
        "siteName": site_settings.site_name,
        "siteSlogan": site_settings.site_slogan,
        "siteDescription": site_settings.site_description,
        "footerDescription": site_settings.footer_description,
        "contactEmail": site_settings.contact_email,
        "contactAddress": site_settings.contact_address,
        "socialInstagram": site_settings.social_instagram,
        "socialGithub": site_settings.social_github,
        "socialLinkedin": site_settings.social_linkedin,
        "defaultTokenBalance": site_settings.default_token_balance,
        "maxFileUploadSize": site_settings.max_file_upload_size,
        "updatedBy": site_settings.updated_by,
        "updatedAt": isoformat(site_settings.updated_at),
    }


def transaction_payload(transaction: TokenTransaction, users: dict) -> dict:
    user = users.get(transaction.user_id)
    admin = users.get(transaction.admin_id)
    return {
        "id": transaction.id,
        "userId": transaction.user_id,
        "userEmail": user.email if user else None,
        "adminId": transaction.admin_id,
        "adminEmail": admin.email if admin else None,
        "tokens": transaction.tokens,
        "operation": transaction.operation,
        "reason": transaction.reason,
        "previousBalance": transaction.previous_balance,
        "newBalance": transaction.new_balance,
        "reference": transaction.reference,
        "createdAt": isoformat(transaction.created_at),
    }


def _users_by_id(db: Session, transactions: list[TokenTransaction]) -> dict:
    ids = {t.user_id for t in transactions} | {t.admin_id for t in transactions if t.admin_id}
    if not ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}


# Users
# -----------------------------

@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query(""),
    role: str = Query(""),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    result = user_service.list_users(db, page, limit, search, role, sort_by, sort_order)
    return {"users": [user_payload(user) for user in result["users"]], "pagination": result["pagination"]}


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    data: AdminUserCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = user_service.create_user(db, data.email, data.name, data.role, data.token_balance, data.password)
    return user_payload(user)


@router.get("/users/{user_id}")
async def get_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return user_payload(user_service.get_user(db, user_id))


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    data: AdminUserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = user_service.update_user(db, user_id, data.model_dump(exclude_unset=True), admin.id)
    return user_payload(user)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user_service.delete_user(db, user_id)
    return {"success": True, "message": "User deleted successfully"}


# Tickets
# -----------------------------

@router.get("/tickets")
async def list_tickets(
    search: str = Query(""),
    status_filter: str = Query("", alias="status"),
    priority: str = Query(""),
    category: str = Query(""),
    sort_by: str = Query("updatedAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    rows = ticket_service.list_all(db, search, status_filter, priority, category, sort_by, sort_order)
    tickets = []
    for ticket, owner in rows:
        payload = ticket_summary(ticket)
        payload["userId"] = ticket.user_id
        payload["userName"] = owner.name if owner else "Unknown"
        payload["userEmail"] = owner.email if owner else ""
        tickets.append(payload)
    return {"tickets": tickets}


@router.get("/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.get_ticket(db, ticket_id)
    payload = ticket_detail(db, ticket)
    owner = db.query(User).filter(User.id == ticket.user_id).first()
    payload["user"] = {"id": owner.id, "name": owner.name, "email": owner.email} if owner else None
    return {"ticket": payload}


@router.patch("/tickets/{ticket_id}")
async def update_ticket(
    ticket_id: int,
    data: TicketUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.update_ticket(db, ticket_id, data.model_dump(exclude_none=True))
    return {"ticket": ticket_summary(ticket), "message": "Ticket updated successfully"}


@router.delete("/tickets/{ticket_id}")
async def delete_ticket(
    ticket_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    ticket_service.delete_ticket(db, ticket_id)
    return {"success": True, "message": "Ticket deleted successfully"}


@router.post("/tickets/{ticket_id}/reply", status_code=status.HTTP_201_CREATED)
async def reply_to_ticket(
    ticket_id: int,
    data: TicketReply,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    ticket = ticket_service.get_ticket(db, ticket_id)
    ticket_service.add_reply(db, ticket, admin.id, data.content, by="admin")
    return {"ticket": ticket_detail(db, ticket), "message": "Reply added successfully"}


# Tokens
# -----------------------------

@router.get("/tokens")
async def list_token_transactions(
    user_id: Optional[int] = Query(None, alias="userId"),
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    transactions = token_service.list_transactions(db, user_id, limit)
    users = _users_by_id(db, transactions)
    return {"transactions": [transaction_payload(t, users) for t in transactions]}


@router.post("/tokens")
async def adjust_tokens(
    data: TokenAdjust,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    transaction = token_service.apply(db, data.user_id, data.operation, data.amount, data.reason, admin_id=admin.id)
    users = _users_by_id(db, [transaction])
    return {
        "success": True,
        "transaction": transaction_payload(transaction, users),
        "newBalance": transaction.new_balance,
    }


@router.put("/tokens")
async def bulk_adjust_tokens(
    data: BulkTokenAdjust,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    transactions = token_service.bulk_apply(db, data.operation, data.amount, admin.id, data.reason, data.role)
    return {
        "success": True,
        "affectedUsers": len(transactions),
        "message": f"Applied {data.operation} to {len(transactions)} users",
    }


# Stats and settings
# -----------------------------

@router.get("/stats")
async def get_stats(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return usage_service.admin_stats(db)


@router.get("/settings")
async def get_site_settings(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"settings": site_settings_payload(settings_service.get_site_settings(db))}


@router.patch("/settings")
async def update_site_settings(
    data: SiteSettingsUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    site_settings = settings_service.update_site_settings(db, data.model_dump(exclude_none=True), admin.id)
    logger.info(f"Admin {admin.id} updated site settings")
    return {"settings": site_settings_payload(site_settings), "message": "Settings updated successfully"}


# Alerts
# -----------------------------

@router.get("/alerts")
async def list_alerts(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"alerts": [alert_payload(alert) for alert in alert_service.list_alerts(db)]}


@router.post("/alerts", status_code=status.HTTP_201_CREATED)
async def create_alert(
    data: AlertCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Publish a dashboard banner, either to everyone or to a single user"""
    if data.type == "user":
        if data.user_id is None:
            raise ValidationFailed("User alerts need a userId")
        if db.get(User, data.user_id) is None:
            raise NotFound("User not found")

    alert = alert_service.create_alert(
        db,
        data.title,
        data.description,
        severity=data.severity,
        type=data.type,
        user_id=data.user_id,
        start_date=data.start_date,
        end_date=data.end_date,
        link=data.link,
        link_text=data.link_text,
    )
    logger.info(f"Admin {admin.id} created {data.type} alert {alert.id}")
    return {"alert": alert_payload(alert)}
