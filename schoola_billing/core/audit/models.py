from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from schoola_billing.core.database.base import Base, BigIntPK


class AuditLog(Base):
    """
    One billing state change: who did what to which record.

    The actor is whatever identity the caller passed (a staff id, a student id
    for self-service redemptions, or nothing for system jobs). Amounts in
    old_values/new_values are stored as strings.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Discount, Subscription, Invoice or Payment
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    # Discount code or document number, when the record has one
    entity_identifier: Mapped[str | None] = mapped_column(String(100), nullable=True)

    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_audit_logs_entity", "entity_type", "entity_id"),)
