import logging
import math
from typing import Any, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from cadogy.core.exceptions import Conflict, NotFound, ValidationFailed
from cadogy.core.security import get_password_hash
from cadogy.models.api_key import ApiKey
from cadogy.models.api_usage import ApiUsage
from cadogy.models.notification_preference import NotificationPreference
from cadogy.models.subscription import Subscription
from cadogy.models.system_alert import SystemAlert
from cadogy.models.ticket import Ticket
from cadogy.models.token_transaction import TokenTransaction
from cadogy.models.user import User, ROLES, ROLE_USER
from cadogy.models.verification_token import VerificationToken
from cadogy.services.auth_service import normalize_email
from cadogy.services.token_service import token_service
from cadogy.utils.dates import utcnow

logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {
    "createdAt": User.created_at,
    "updatedAt": User.updated_at,
    "name": User.name,
    "email": User.email,
    "role": User.role,
    "tokenBalance": User.token_balance,
}


def _check_role(role: Optional[str]) -> None:
    if role is not None and role not in ROLES:
        raise ValidationFailed(f"Role must be one of: {', '.join(ROLES)}")


class UserService:
    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    def email_taken(db: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
        query = db.query(User.id).filter(User.email == email)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        return query.first() is not None

    @staticmethod
    def list_users(
        db: Session,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        role: str = "",
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        query = db.query(User)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        if role:
            query = query.filter(User.role == role)

        total = query.count()
        column = USER_SORT_FIELDS.get(sort_by, User.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        users = query.order_by(ordering, User.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "users": users,
            "pagination": {
                "page": page,
                "limit": limit,
                "totalUsers": total,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
        }

    @staticmethod
    def create_user(
        db: Session,
        email: str,
        name: Optional[str] = None,
        role: Optional[str] = None,
        token_balance: int = 0,
        password: Optional[str] = None,
    ) -> User:
        """Admin-created accounts are verified from the start"""
        _check_role(role)
        email = normalize_email(email)
        if UserService.email_taken(db, email):
            raise Conflict("User with this email already exists")

        user = User(
            email=email,
            name=name,
            role=role or ROLE_USER,
            token_balance=token_balance or 0,
            hashed_password=get_password_hash(password) if password else None,
            email_verified_at=utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Admin created user {user.id}")
        return user

    @staticmethod
    def update_user(db: Session, user_id: int, changes: dict[str, Any], admin_id: int) -> User:
        """
        Admin update. A token balance change is written to the ledger as a
        "set" in the same commit as the other fields.
        """
        _check_role(changes.get("role"))
        user = UserService.get_user(db, user_id)

        if changes.get("email") is not None:
            email = normalize_email(changes["email"])
            if UserService.email_taken(db, email, exclude_user_id=user.id):
                raise Conflict("Email is already in use")
            user.email = email
        if changes.get("name") is not None:
            user.name = changes["name"]
        if changes.get("role") is not None and changes["role"] != user.role:
            logger.info(f"Admin {admin_id} changed role of user {user.id} to {changes['role']}")
            user.role = changes["role"]

        balance = changes.get("token_balance")
        if balance is not None and balance != user.token_balance:
            token_service.record_change(db, user, "set", balance, "Updated from user management", admin_id)

        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def delete_user(db: Session, user_id: int) -> None:
        """Delete a user together with every row that points at it"""
        user = UserService.get_user(db, user_id)

        db.query(ApiUsage).filter(ApiUsage.user_id == user.id).delete(synchronize_session=False)
        db.query(ApiKey).filter(ApiKey.user_id == user.id).delete(synchronize_session=False)
        for ticket in db.query(Ticket).filter(Ticket.user_id == user.id).all():
            db.delete(ticket)
        db.query(TokenTransaction).filter(TokenTransaction.user_id == user.id).delete(synchronize_session=False)
        db.query(TokenTransaction).filter(TokenTransaction.admin_id == user.id).update(
            {TokenTransaction.admin_id: None}, synchronize_session=False
        )
        db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).delete(
            synchronize_session=False
        )
        db.query(Subscription).filter(Subscription.user_id == user.id).delete(synchronize_session=False)
        db.query(SystemAlert).filter(SystemAlert.user_id == user.id).delete(synchronize_session=False)
        db.query(VerificationToken).filter(VerificationToken.identifier == user.email).delete(
            synchronize_session=False
        )
        db.delete(user)
        db.commit()
        logger.info(f"Deleted user {user_id}")

    @staticmethod
    def update_name(db: Session, user: User, name: str, image: Optional[str] = None) -> User:
        user.name = name
        if image is not None:
            user.image = image
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def update_profile(db: Session, user: User, changes: dict[str, Any]) -> User:
        """
        Self-service profile update from the settings page.

        Only keys present in `changes` are touched; an explicit None image
        removes the avatar.
        """
        if "email" in changes and changes["email"] is not None:
            email = normalize_email(changes["email"])
            if email != user.email:
                if UserService.email_taken(db, email, exclude_user_id=user.id):
                    raise Conflict("Email is already in use")
                user.email = email
        if "name" in changes and changes["name"] is not None:
            user.name = changes["name"]
        if "image" in changes:
            user.image = changes["image"] or None
        db.commit()
        db.refresh(user)
        return user


user_service = UserService()
