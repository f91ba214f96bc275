"""
SQLAlchemy models for the shared pending-login store (multi-instance deployments).
"""
from sqlalchemy import Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PendingAuthorizationRecord(Base):
    __tablename__ = "pending_authorizations"

    state: Mapped[str] = mapped_column(String(255), primary_key=True)
    code_verifier: Mapped[str] = mapped_column(String(255), nullable=False)
    nonce: Mapped[str] = mapped_column(String(255), nullable=False)
    return_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Epoch seconds, same clock as the TTL check
    created_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
