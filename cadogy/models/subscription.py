from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Float
from sqlalchemy.sql import func
from cadogy.core.database import Base

SUBSCRIPTION_STATUSES = ("active", "canceled", "past_due", "trialing", "unpaid")


class Subscription(Base):
    """API plan of a user; drives the billing cycle shown on the dashboard"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=False)
    status = Column(String, index=True, nullable=False, default="active")
    monthly_quota = Column(Integer, nullable=False)
    current_usage = Column(Integer, nullable=False, default=0)
    # USD per month; 0 for the free plan
    monthly_price = Column(Float, nullable=False, default=0.0)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), index=True, nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
