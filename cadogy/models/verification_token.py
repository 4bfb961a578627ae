from sqlalchemy import Column, Integer, String, DateTime
from cadogy.core.database import Base


class VerificationToken(Base):
    """
    Single-use token proving control of an email address.

    Shared by email verification (24h) and password reset (1h). Issuing a
    new token deletes every earlier token for the same identifier.
    """
    __tablename__ = "verification_tokens"

    id = Column(Integer, primary_key=True, index=True)
    # The email address the token was sent to
    identifier = Column(String, index=True, nullable=False)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)
