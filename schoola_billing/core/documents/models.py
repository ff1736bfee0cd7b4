from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from schoola_billing.core.database.base import Base


class DocumentSequence(Base):
    """
    Last number handed out for a numbering scope in a calendar year.

    Scopes are either a payment prefix ("PAY") or an invoice sequence scope
    ("INV", or one per branch). Rows are created lazily and never deleted.
    """

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("scope", "year", name="uq_document_sequence_scope_year"),)
