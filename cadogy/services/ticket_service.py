import logging
from typing import Any, Optional
from sqlalchemy import or_, cast, String
from sqlalchemy.orm import Session
from cadogy.core.exceptions import NotFound, ValidationFailed
from cadogy.models.ticket import Ticket, TicketMessage, CATEGORIES, PRIORITIES, STATUSES
from cadogy.models.user import User
from cadogy.utils.dates import utcnow

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "createdAt": Ticket.created_at,
    "updatedAt": Ticket.updated_at,
    "lastReplyAt": Ticket.last_reply_at,
    "priority": Ticket.priority,
    "status": Ticket.status,
    "subject": Ticket.subject,
}

# Replying to a ticket in one of these states reopens it
REOPEN_STATUSES = ("resolved", "closed")


def _check_choice(value: Optional[str], choices: tuple, label: str) -> None:
    if value is not None and value not in choices:
        raise ValidationFailed(f"Invalid {label}. Must be one of: {', '.join(choices)}")


class TicketService:
    @staticmethod
    def create_ticket(
        db: Session,
        user_id: int,
        subject: str,
        message: str,
        category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Ticket:
        _check_choice(category, CATEGORIES, "category")
        _check_choice(priority, PRIORITIES, "priority")

        now = utcnow()
        ticket = Ticket(
            user_id=user_id,
            subject=subject,
            category=category or "general",
            priority=priority or "medium",
            status="open",
            last_reply_at=now,
            last_reply_by="user",
        )
        ticket.messages.append(TicketMessage(author_id=user_id, content=message, created_at=now))
        db.add(ticket)
        db.commit()
        db.refresh(ticket)
        logger.info(f"User {user_id} opened ticket {ticket.id}")
        return ticket

    @staticmethod
    def list_user_tickets(db: Session, user_id: int) -> list[Ticket]:
        return (
            db.query(Ticket)
            .filter(Ticket.user_id == user_id)
            .order_by(Ticket.updated_at.desc(), Ticket.id.desc())
            .all()
        )

    @staticmethod
    def get_ticket(db: Session, ticket_id: int, user_id: Optional[int] = None) -> Ticket:
        """Fetch a ticket; with `user_id` only the owner's ticket is found"""
        query = db.query(Ticket).filter(Ticket.id == ticket_id)
        if user_id is not None:
            query = query.filter(Ticket.user_id == user_id)
        ticket = query.first()
        if ticket is None:
            raise NotFound("Ticket not found")
        return ticket

    @staticmethod
    def add_reply(db: Session, ticket: Ticket, author_id: int, content: str, by: str) -> TicketMessage:
        now = utcnow()
        message = TicketMessage(author_id=author_id, content=content, created_at=now)
        ticket.messages.append(message)
        ticket.last_reply_at = now
        ticket.last_reply_by = by
        if by == "user" and ticket.status in REOPEN_STATUSES:
            ticket.status = "open"
        ticket.updated_at = now
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def list_all(
        db: Session,
        search: str = "",
        status: str = "",
        priority: str = "",
        category: str = "",
        sort_by: str = "updatedAt",
        sort_order: str = "desc",
    ) -> list[tuple[Ticket, Optional[User]]]:
        query = db.query(Ticket, User).outerjoin(User, User.id == Ticket.user_id)
        if status:
            query = query.filter(Ticket.status == status)
        if priority:
            query = query.filter(Ticket.priority == priority)
        if category:
            query = query.filter(Ticket.category == category)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Ticket.subject.ilike(pattern),
                    cast(Ticket.user_id, String).ilike(pattern),
                    User.email.ilike(pattern),
                )
            )
        column = SORT_FIELDS.get(sort_by, Ticket.updated_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        return query.order_by(ordering, Ticket.id.desc()).all()

    @staticmethod
    def update_ticket(db: Session, ticket_id: int, changes: dict[str, Any]) -> Ticket:
        _check_choice(changes.get("status"), STATUSES, "status")
        _check_choice(changes.get("priority"), PRIORITIES, "priority")
        _check_choice(changes.get("category"), CATEGORIES, "category")

        ticket = TicketService.get_ticket(db, ticket_id)
        for field in ("status", "priority", "category"):
            if changes.get(field):
                setattr(ticket, field, changes[field])
        ticket.updated_at = utcnow()
        db.commit()
        db.refresh(ticket)
        return ticket

    @staticmethod
    def delete_ticket(db: Session, ticket_id: int) -> None:
        ticket = TicketService.get_ticket(db, ticket_id)
        db.delete(ticket)
        db.commit()
        logger.info(f"Deleted ticket {ticket_id}")

    @staticmethod
    def message_authors(db: Session, ticket: Ticket) -> dict[int, User]:
        author_ids = {message.author_id for message in ticket.messages}
        if not author_ids:
            return {}
        return {user.id: user for user in db.query(User).filter(User.id.in_(author_ids)).all()}


ticket_service = TicketService()
