from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, field_validator
from sqlalchemy.orm import Session
from cadogy.api.dependencies import get_current_user
from cadogy.core.database import get_db
from cadogy.core.security import password_policy_error
from cadogy.models.user import User
from cadogy.services.auth_service import auth_service
from cadogy.services.settings_service import settings_service
from cadogy.services.user_service import user_service

router = APIRouter(prefix="/settings", tags=["settings"])


class ProfileSettingsUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    # Explicit null removes the avatar; leaving the field out keeps it
    image: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str = Field(alias="currentPassword", min_length=1)
    new_password: str = Field(alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        error = password_policy_error(value)
        if error:
            raise ValueError(error)
        return value


class NotificationSettings(BaseModel):
    api_usage: StrictBool = Field(alias="apiUsage")
    security: StrictBool
    marketing: StrictBool
    newsletter: StrictBool

    model_config = ConfigDict(populate_by_name=True)


def notifications_payload(prefs) -> dict:
    return {
        "apiUsage": prefs.api_usage,
        "security": prefs.security,
        "marketing": prefs.marketing,
        "newsletter": prefs.newsletter,
    }


@router.put("/profile")
async def update_profile_settings(
    data: ProfileSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = user_service.update_profile(db, current_user, data.model_dump(exclude_unset=True))
    return {
        "message": "Profile updated successfully",
        "user": {"id": user.id, "name": user.name, "email": user.email, "image": user.image},
    }


@router.put("/password")
async def change_password(
    data: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    auth_service.change_password(db, current_user, data.current_password, data.new_password)
    return {"message": "Password updated successfully"}


@router.get("/notifications")
async def get_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    prefs = settings_service.get_notification_preferences(db, current_user.id)
    return {"preferences": notifications_payload(prefs)}


@router.put("/notifications")
async def update_notifications(
    data: NotificationSettings,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    prefs = settings_service.update_notification_preferences(db, current_user.id, data.model_dump())
    return {"message": "Notification preferences updated", "preferences": notifications_payload(prefs)}
