from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from cadogy.core.database import Base

CATEGORIES = ("technical", "billing", "general", "feature-request", "bug-report")
PRIORITIES = ("low", "medium", "high")
STATUSES = ("open", "in-progress", "resolved", "closed")


class Ticket(Base):
    """
    Support ticket opened by a customer.

    Messages are append-only; a customer reply reopens a resolved or
    closed ticket.
    """
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    subject = Column(String, nullable=False)
    category = Column(String, nullable=False, default="general")
    priority = Column(String, nullable=False, default="medium")
    status = Column(String, index=True, nullable=False, default="open")
    last_reply_at = Column(DateTime(timezone=True), nullable=True)
    # "user" or "admin"
    last_reply_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    messages = relationship(
        "TicketMessage",
        back_populates="ticket",
        order_by="TicketMessage.id",
        cascade="all, delete-orphan",
    )


class TicketMessage(Base):
    __tablename__ = "ticket_messages"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), index=True, nullable=False)
    # Kept when the author account is deleted; rendered as "Unknown User"
    author_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    ticket = relationship("Ticket", back_populates="messages")
