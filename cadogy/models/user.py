from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from cadogy.core.database import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


class User(Base):
    """
    User model representing application users.

    Stores authentication credentials and user profile information.
    Passwords are stored as hashes (never plaintext).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Email is unique and indexed for fast lookups during login
    email = Column(String, unique=True, index=True, nullable=False)
    # Null for accounts created through an external identity provider
    hashed_password = Column(String, nullable=True)
    # Null until the user clicks the verification link; blocks credential login
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    # Only admin routes may change the role
    role = Column(String, nullable=False, default=ROLE_USER)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    # Prepaid API tokens; every change goes through token_service so the ledger stays in sync
    token_balance = Column(Integer, nullable=False, default=0)
    # Timestamps are set automatically by database
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
