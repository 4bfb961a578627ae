from typing import Any, Optional
from sqlalchemy.orm import Session
from cadogy.core.exceptions import ValidationFailed
from cadogy.models.site_settings import SiteSettings, DEFAULT_FOOTER_DESCRIPTION
from cadogy.models.notification_preference import NotificationPreference

# Fields visible to anonymous visitors through /api/public/settings
PUBLIC_FIELDS = (
    "registration_enabled",
    "maintenance_mode",
    "site_name",
    "site_slogan",
    "site_description",
    "footer_description",
    "contact_email",
    "contact_address",
    "social_instagram",
    "social_github",
    "social_linkedin",
)

PUBLIC_DEFAULTS = {
    "registration_enabled": True,
    "maintenance_mode": False,
    "site_name": "Cadogy",
    "site_slogan": "",
    "site_description": "",
    "footer_description": DEFAULT_FOOTER_DESCRIPTION,
    "contact_email": "hello@cadogy.com",
    "contact_address": "Pompano Beach, FL",
    "social_instagram": "https://www.instagram.com/cadogyweb",
    "social_github": "https://www.github.com/cadogy",
    "social_linkedin": "https://www.linkedin.com/company/cadogy",
}

NOTIFICATION_FIELDS = ("api_usage", "security", "marketing", "newsletter")


class SettingsService:
    @staticmethod
    def get_site_settings(db: Session) -> SiteSettings:
        """Return the settings row, creating it with defaults on first read"""
        site_settings = db.query(SiteSettings).order_by(SiteSettings.id).first()
        if site_settings is None:
            site_settings = SiteSettings()
            db.add(site_settings)
            db.commit()
            db.refresh(site_settings)
        return site_settings

    @staticmethod
    def peek_site_settings(db: Session) -> Optional[SiteSettings]:
        # Read-only lookup for callers that must not create the row
        return db.query(SiteSettings).order_by(SiteSettings.id).first()

    @staticmethod
    def update_site_settings(db: Session, changes: dict[str, Any], admin_id: int) -> SiteSettings:
        """Apply a partial update. Keys not present in `changes` keep their value."""
        opacity = changes.get("dashboard_background_opacity")
        if opacity is not None and not 0 <= opacity <= 1:
            raise ValidationFailed("Background opacity must be between 0 and 1")
        balance = changes.get("default_token_balance")
        if balance is not None and balance < 0:
            raise ValidationFailed("Default token balance cannot be negative")

        site_settings = SettingsService.get_site_settings(db)
        for field, value in changes.items():
            if value is None or not hasattr(SiteSettings, field):
                continue
            setattr(site_settings, field, value)
        site_settings.updated_by = admin_id
        db.commit()
        db.refresh(site_settings)
        return site_settings

    @staticmethod
    def public_settings(db: Session) -> dict[str, Any]:
        site_settings = SettingsService.peek_site_settings(db)
        if site_settings is None:
            return dict(PUBLIC_DEFAULTS)
        return {field: getattr(site_settings, field) for field in PUBLIC_FIELDS}

    @staticmethod
    def registration_enabled(db: Session) -> bool:
        site_settings = SettingsService.peek_site_settings(db)
        return site_settings.registration_enabled if site_settings else True

    @staticmethod
    def default_token_balance(db: Session) -> int:
        site_settings = SettingsService.peek_site_settings(db)
        return site_settings.default_token_balance if site_settings else 0

    @staticmethod
    def get_notification_preferences(db: Session, user_id: int) -> NotificationPreference:
        prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
        if prefs is None:
            prefs = NotificationPreference(
                user_id=user_id, api_usage=True, security=True, marketing=False, newsletter=False
            )
            db.add(prefs)
            db.commit()
            db.refresh(prefs)
        return prefs

    @staticmethod
    def update_notification_preferences(db: Session, user_id: int, values: dict[str, bool]) -> NotificationPreference:
        prefs = SettingsService.get_notification_preferences(db, user_id)
        for field in NOTIFICATION_FIELDS:
            setattr(prefs, field, values[field])
        db.commit()
        db.refresh(prefs)
        return prefs


settings_service = SettingsService()
