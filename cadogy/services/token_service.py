"""
Token balance changes and their ledger.

Every change locks the user row, computes the new balance, writes the
TokenTransaction and commits once. A balance is never updated without its
ledger entry, and the other way round.
"""
import logging
from typing import Optional, Union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from cadogy.core.exceptions import InsufficientBalance, NotFound, ValidationFailed
from cadogy.models.token_transaction import TokenTransaction
from cadogy.models.user import User

logger = logging.getLogger(__name__)

BULK_OPERATIONS = ("add", "deduct", "set", "multiply")

Amount = Union[int, float]


def compute_balance(operation: str, previous: int, amount: Amount) -> int:
    """New balance for `operation`; raises for invalid amounts or an overdrawn `use`"""
    if operation == "multiply":
        if amount < 0:
            raise ValidationFailed("Multiplier cannot be negative")
        return int(round(previous * amount))

    if amount != int(amount):
        raise ValidationFailed("Amount must be a whole number")
    amount = int(amount)

    if operation == "set":
        if amount < 0:
            raise ValidationFailed("Balance cannot be negative")
        return amount
    if amount <= 0:
        raise ValidationFailed("Amount must be a positive number")
    if operation in ("add", "purchase"):
        return previous + amount
    if operation == "deduct":
        # Admin deductions clamp at zero instead of failing
        return max(0, previous - amount)
    if operation == "use":
        if previous < amount:
            raise InsufficientBalance(previous)
        return previous - amount
    raise ValidationFailed(f"Unknown operation: {operation}")


class TokenService:
    @staticmethod
    def _lock_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    def record_change(
        db: Session,
        user: User,
        operation: str,
        amount: Amount,
        reason: str,
        admin_id: Optional[int],
        reference: Optional[str] = None,
    ) -> TokenTransaction:
        previous = user.token_balance or 0
        new_balance = compute_balance(operation, previous, amount)
        user.token_balance = new_balance
        transaction = TokenTransaction(
            user_id=user.id,
            admin_id=admin_id,
            tokens=new_balance - previous,
            operation=operation,
            reason=reason or "",
            previous_balance=previous,
            new_balance=new_balance,
            reference=reference,
        )
        db.add(transaction)
        return transaction

    @staticmethod
    def apply(
        db: Session,
        user_id: int,
        operation: str,
        amount: Amount,
        reason: str = "",
        admin_id: Optional[int] = None,
    ) -> TokenTransaction:
        try:
            user = TokenService._lock_user(db, user_id)
            transaction = TokenService.record_change(db, user, operation, amount, reason, admin_id)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(transaction)
        logger.info(
            f"Token {operation} for user {user_id}: {transaction.previous_balance} -> {transaction.new_balance}"
        )
        return transaction

    @staticmethod
    def credit_purchase(db: Session, user_id: int, tokens: int, reference: str, reason: str) -> Optional[TokenTransaction]:
        """
        Credit purchased tokens once per payment reference.

        Returns None when the reference was already credited.
        """
        if db.query(TokenTransaction.id).filter(TokenTransaction.reference == reference).first():
            return None
        try:
            user = TokenService._lock_user(db, user_id)
            transaction = TokenService.record_change(db, user, "purchase", tokens, reason, None, reference=reference)
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same payment won the unique reference
            db.rollback()
            logger.info(f"Payment {reference} was already credited")
            return None
        except Exception:
            db.rollback()
            raise
        db.refresh(transaction)
        logger.info(f"Credited {tokens} purchased tokens to user {user_id} for {reference}")
        return transaction

    @staticmethod
    def bulk_apply(
        db: Session,
        operation: str,
        amount: Amount,
        admin_id: int,
        reason: str = "",
        role: Optional[str] = None,
    ) -> list[TokenTransaction]:
        """Apply one operation to every user (or every user with `role`) in a single transaction"""
        if operation not in BULK_OPERATIONS:
            raise ValidationFailed(f"Bulk operation must be one of: {', '.join(BULK_OPERATIONS)}")

        query = db.query(User)
        if role:
            query = query.filter(User.role == role)
        try:
            users = query.order_by(User.id).with_for_update().all()
            transactions = [TokenService.record_change(db, user, operation, amount, reason, admin_id) for user in users]
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Bulk token {operation} by admin {admin_id} applied to {len(transactions)} users")
        return transactions

    @staticmethod
    def list_transactions(db: Session, user_id: Optional[int] = None, limit: int = 50) -> list[TokenTransaction]:
        query = db.query(TokenTransaction)
        if user_id is not None:
            query = query.filter(TokenTransaction.user_id == user_id)
        return query.order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc()).limit(limit).all()


token_service = TokenService()
