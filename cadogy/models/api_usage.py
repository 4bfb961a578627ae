from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from cadogy.core.database import Base
from cadogy.utils.dates import utcnow


class ApiUsage(Base):
    """One request made with a per-user API key"""
    __tablename__ = "api_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    api_key_id = Column(Integer, ForeignKey("api_keys.id", ondelete="SET NULL"), index=True, nullable=True)
    endpoint = Column(String, index=True, nullable=False)
    method = Column(String, nullable=False)
    status_code = Column(Integer, nullable=False)
    response_time_ms = Column(Integer, nullable=False, default=0)
    # Set in Python so aggregation windows don't depend on the db clock
    timestamp = Column(DateTime(timezone=True), index=True, nullable=False, default=utcnow)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
