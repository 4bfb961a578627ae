from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from cadogy.core.database import Base

KEY_TYPES = ("primary", "secondary")


class ApiKey(Base):
    """
    Per-user API key used as a bearer credential on API-key-protected routes.

    The full key is only returned on creation and on an explicit reveal by
    its owner; listings show a masked prefix.
    """
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    # Globally unique - enforced by the index, not by application code
    key = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="primary")
    permissions = Column(JSON, nullable=False, default=lambda: ["read"])
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    # Null means the key never expires
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")
