from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from cadogy.core.database import Base

class TokenTransaction(Base):
    """
    Ledger entry for a change of a user's token balance.

    Written in the same transaction as the balance update, so
    previous_balance/new_balance always match the user row.
    """
    __tablename__ = "token_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    # Null for self-service usage and payments
    admin_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True)
    # Signed change actually applied to the balance
    tokens = Column(Integer, nullable=False)
    operation = Column(String, nullable=False)
    reason = Column(String, nullable=False, default="")
    previous_balance = Column(Integer, nullable=False)
    new_balance = Column(Integer, nullable=False)
    # External reference such as a checkout session id; unique so a payment is credited once
    reference = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
