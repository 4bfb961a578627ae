import logging
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from cadogy.core.exceptions import NotFound, ValidationFailed
from cadogy.core.security import generate_api_key
from cadogy.models.api_key import ApiKey, KEY_TYPES
from cadogy.utils.dates import utcnow

logger = logging.getLogger(__name__)

KEY_ACTIONS = ("enable", "disable")


class ApiKeyService:
    @staticmethod
    def create_key(
        db: Session,
        user_id: int,
        name: str,
        key_type: str = "primary",
        permissions: Optional[list[str]] = None,
    ) -> ApiKey:
        if key_type not in KEY_TYPES:
            raise ValidationFailed(f"Key type must be one of: {', '.join(KEY_TYPES)}")

        # A collision on 32 random alphanumerics is practically impossible; retry once anyway
        for _ in range(2):
            api_key = ApiKey(
                user_id=user_id,
                key=generate_api_key(key_type),
                name=name,
                type=key_type,
                permissions=permissions or ["read"],
                is_active=True,
            )
            db.add(api_key)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                continue
            db.refresh(api_key)
            logger.info(f"Created {key_type} API key {api_key.id} for user {user_id}")
            return api_key
        raise ValidationFailed("Could not generate a unique API key")

    @staticmethod
    def list_keys(db: Session, user_id: int) -> list[ApiKey]:
        return (
            db.query(ApiKey)
            .filter(ApiKey.user_id == user_id)
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
            .all()
        )

    @staticmethod
    def get_owned_key(db: Session, user_id: int, key_id: int) -> ApiKey:
        """Fetch a key owned by `user_id`. Someone else's key looks the same as a missing one."""
        api_key = db.query(ApiKey).filter(ApiKey.id == key_id, ApiKey.user_id == user_id).first()
        if api_key is None:
            raise NotFound("API key not found")
        return api_key

    @staticmethod
    def set_active(db: Session, user_id: int, key_id: int, action: str) -> ApiKey:
        if action not in KEY_ACTIONS:
            raise ValidationFailed("Action must be 'enable' or 'disable'")
        api_key = ApiKeyService.get_owned_key(db, user_id, key_id)
        api_key.is_active = action == "enable"
        db.commit()
        db.refresh(api_key)
        return api_key

    @staticmethod
    def delete_key(db: Session, user_id: int, key_id: int) -> None:
        api_key = ApiKeyService.get_owned_key(db, user_id, key_id)
        db.delete(api_key)
        db.commit()
        logger.info(f"Deleted API key {key_id} of user {user_id}")

    @staticmethod
    def verify_key(db: Session, key: str) -> Optional[ApiKey]:
        """
        Look up an active, unexpired key and stamp its last use.

        Returns None for unknown, disabled or expired keys.
        """
        if not key:
            return None
        now = utcnow()
        api_key = (
            db.query(ApiKey)
            .filter(
                ApiKey.key == key,
                ApiKey.is_active.is_(True),
                or_(ApiKey.expires_at.is_(None), ApiKey.expires_at > now),
            )
            .first()
        )
        if api_key is None:
            return None
        api_key.last_used_at = now
        db.commit()
        return api_key

    @staticmethod
    def get_default_key(db: Session, user_id: int) -> Optional[ApiKey]:
        """The key shown on the usage page: the newest active primary key, else the newest active key"""
        active = (
            db.query(ApiKey)
            .filter(ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
            .all()
        )
        for api_key in active:
            if api_key.type == "primary":
                return api_key
        return active[0] if active else None


api_key_service = ApiKeyService()
