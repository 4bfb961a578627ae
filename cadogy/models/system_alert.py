from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.sql import func
from cadogy.core.database import Base
from cadogy.utils.dates import utcnow


class SystemAlert(Base):
    """Banner shown on the dashboard; system-wide or targeted at one user"""
    __tablename__ = "system_alerts"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    severity = Column(String, nullable=False, default="info")  # info | warning | error
    type = Column(String, index=True, nullable=False, default="system")  # system | user
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True)
    is_active = Column(Boolean, index=True, nullable=False, default=True)
    start_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    end_date = Column(DateTime(timezone=True), nullable=True)
    link = Column(String, nullable=True)
    link_text = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
